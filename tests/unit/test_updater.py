"""
Unit tests for mastery updates.

Tests:
- Logit-space update formula
- Misconception cap and tag bookkeeping
- Stability EMA
- Attempt bookkeeping (confirmations, formats, applied confirmation)
"""

import math

import pytest

from brok.mastery import Evidence, UnitType, apply_attempt, update_mastery


def _sigmoid(z):
    return 1 / (1 + math.exp(-z))


def evidence(score, format_strength=0.6, difficulty=0.5, **kwargs):
    return Evidence(score=score, format_strength=format_strength, difficulty=difficulty, **kwargs)


class TestUpdateMastery:
    """Tests for the core state transition."""

    def test_correct_answer_formula(self, make_state):
        state = make_state(uncertainty=0.8, stability=0.3)

        update = update_mastery(state, evidence(1.0))

        # E = 0.45, lr = 0.3 × 0.45 × 0.9
        assert update.evidence_strength == pytest.approx(0.45)
        assert update.new_mastery_p == pytest.approx(round(_sigmoid(0.1215), 4))
        assert update.new_uncertainty == pytest.approx(0.7325)
        assert update.new_stability == pytest.approx(0.51)

    def test_wrong_answer_lowers_mastery(self, make_state):
        state = make_state(uncertainty=0.8, stability=0.3)

        update = update_mastery(state, evidence(0.0))

        assert update.new_mastery_p == pytest.approx(round(_sigmoid(-0.1215), 4))
        assert update.new_mastery_p < 0.5
        assert update.new_stability == pytest.approx(0.21)

    def test_half_score_leaves_mastery_unchanged(self, make_state):
        update = update_mastery(make_state(), evidence(0.5))
        assert update.new_mastery_p == pytest.approx(0.5)

    def test_higher_score_never_yields_lower_mastery(self, make_state):
        state = make_state(mastery_p=0.6, uncertainty=0.5)
        low = update_mastery(state, evidence(0.6))
        high = update_mastery(state, evidence(0.9))
        assert high.new_mastery_p >= low.new_mastery_p

    def test_uncertain_states_move_further(self, make_state):
        certain = update_mastery(make_state(uncertainty=0.0), evidence(1.0))
        uncertain = update_mastery(make_state(uncertainty=1.0), evidence(1.0))
        assert uncertain.new_mastery_p > certain.new_mastery_p

    def test_misconception_caps_mastery(self, make_state):
        state = make_state(mastery_p=0.99, uncertainty=0.1)

        update = update_mastery(state, evidence(1.0, misconceptions_detected=["sign-error"]))

        assert update.new_mastery_p <= 0.75
        assert "sign-error" in update.new_misconception_tags

    def test_misconception_fails_stability(self, make_state):
        state = make_state(stability=0.5)
        update = update_mastery(state, evidence(1.0, misconceptions_detected=["sign-error"]))
        assert update.new_stability == pytest.approx(0.35)

    def test_pass_threshold_is_inclusive(self, make_state):
        update = update_mastery(make_state(stability=0.0), evidence(0.85))
        assert update.new_stability == pytest.approx(0.3)

    def test_extreme_probabilities_are_clamped(self, make_state):
        top = update_mastery(make_state(mastery_p=1.0), evidence(1.0))
        bottom = update_mastery(make_state(mastery_p=0.0), evidence(0.0))
        assert 0.0 <= top.new_mastery_p <= 1.0
        assert 0.0 <= bottom.new_mastery_p <= 1.0
        assert math.isfinite(top.new_mastery_p)

    def test_uncertainty_never_increases_and_floors_at_zero(self, make_state):
        state = make_state(uncertainty=0.05)
        update = update_mastery(state, evidence(0.0, format_strength=1.0, difficulty=1.0))
        assert update.new_uncertainty == 0.0

    def test_detected_tags_accumulate(self, make_state):
        state = make_state(misconception_tags=frozenset({"off-by-one"}))
        update = update_mastery(state, evidence(0.4, misconceptions_detected=["sign-error"]))
        assert update.new_misconception_tags == frozenset({"off-by-one", "sign-error"})

    def test_clean_strong_attempt_clears_all_tags(self, make_state):
        state = make_state(misconception_tags=frozenset({"off-by-one", "sign-error"}))
        update = update_mastery(state, evidence(0.95))
        assert update.new_misconception_tags == frozenset()

    def test_clean_moderate_attempt_keeps_tags(self, make_state):
        state = make_state(misconception_tags=frozenset({"off-by-one"}))
        update = update_mastery(state, evidence(0.85))
        assert update.new_misconception_tags == frozenset({"off-by-one"})

    def test_outputs_within_unit_range(self, make_state):
        for p in (0.0, 0.3, 0.97, 1.0):
            for score in (0.0, 0.5, 1.0):
                update = update_mastery(make_state(mastery_p=p), evidence(score))
                for value in (update.new_mastery_p, update.new_uncertainty, update.new_stability):
                    assert 0.0 <= value <= 1.0

    def test_deterministic(self, make_state):
        state = make_state(mastery_p=0.42, uncertainty=0.6, stability=0.2)
        ev = evidence(0.7, hint_count=1)
        assert update_mastery(state, ev) == update_mastery(state, ev)

    def test_input_state_untouched(self, make_state):
        state = make_state()
        update_mastery(state, evidence(1.0))
        assert state.mastery_p == 0.5
        assert state.uncertainty == 1.0


class TestApplyAttempt:
    """Tests for attempt bookkeeping around the update."""

    @pytest.fixture
    def near_mastery(self, make_state):
        return make_state(
            mastery_p=0.93,
            uncertainty=0.2,
            stability=0.7,
            confirmation_count=2,
            unit_types_used=frozenset({UnitType.DRILL_SET}),
            has_applied_confirmation=True,
            evidence_count=4,
        )

    def test_first_attempt_bookkeeping(self, make_state, now):
        outcome = apply_attempt(
            make_state(), evidence(0.95, format_strength=0.9), UnitType.APPLIED_FREE_RESPONSE, now=now
        )

        state = outcome.state
        assert state.confirmation_count == 1
        assert state.unit_types_used == frozenset({UnitType.APPLIED_FREE_RESPONSE})
        assert state.has_applied_confirmation is True
        assert state.evidence_count == 1
        assert state.last_evidence_at == now
        assert state.version == 0
        assert outcome.next_action == "continue_practice"
        assert outcome.newly_mastered is False

    def test_accepts_unit_type_string(self, make_state, now):
        outcome = apply_attempt(make_state(), evidence(0.8), "drill_set", now=now)
        assert outcome.state.unit_types_used == frozenset({UnitType.DRILL_SET})

    def test_low_score_is_not_a_confirmation(self, make_state, now):
        outcome = apply_attempt(make_state(), evidence(0.6), UnitType.APPLIED_FREE_RESPONSE, now=now)
        assert outcome.state.confirmation_count == 0
        assert outcome.state.has_applied_confirmation is False

    def test_reaching_mastery(self, near_mastery, now):
        outcome = apply_attempt(
            near_mastery,
            evidence(1.0, format_strength=0.9),
            UnitType.APPLIED_FREE_RESPONSE,
            now=now,
        )

        assert outcome.gate.is_mastered
        assert outcome.newly_mastered is True
        assert outcome.next_action == "skill_mastered"
        assert outcome.state.last_mastered_at == now
        assert outcome.state.confirmation_count == 3

    def test_mastery_timestamp_set_only_once(self, near_mastery, now):
        first = apply_attempt(near_mastery, evidence(1.0, format_strength=0.9), "applied_free_response", now=now)
        later = now.replace(hour=18)

        second = apply_attempt(first.state, evidence(1.0, format_strength=0.9), "applied_free_response", now=later)

        assert second.gate.is_mastered
        assert second.newly_mastered is False
        assert second.state.last_mastered_at == now
        assert second.state.last_evidence_at == later

    def test_error_reversal_clears_target(self, make_state, now):
        state = make_state(misconception_tags=frozenset({"sign-error", "off-by-one"}))

        outcome = apply_attempt(
            state, evidence(0.8), UnitType.ERROR_REVERSAL, target_misconception="sign-error", now=now
        )

        assert outcome.state.misconception_tags == frozenset({"off-by-one"})

    def test_failed_error_reversal_keeps_target(self, make_state, now):
        state = make_state(misconception_tags=frozenset({"sign-error"}))

        outcome = apply_attempt(
            state, evidence(0.5), UnitType.ERROR_REVERSAL, target_misconception="sign-error", now=now
        )

        assert outcome.state.misconception_tags == frozenset({"sign-error"})

    def test_critical_misconception_blocks_mastery(self, near_mastery, now):
        state = near_mastery.evolve(misconception_tags=frozenset({"sign-error"}))

        outcome = apply_attempt(
            state,
            evidence(0.85, format_strength=0.9),
            UnitType.APPLIED_FREE_RESPONSE,
            now=now,
            critical_misconceptions={"sign-error"},
        )

        assert not outcome.gate.is_mastered
        assert "Clear misconceptions first" in outcome.gate.blockers
        assert outcome.next_action == "continue_practice"

    def test_event_records_deltas(self, make_state, now):
        state = make_state()

        outcome = apply_attempt(
            state, evidence(0.3, misconceptions_detected=["sign-error"]), UnitType.DRILL_SET, now=now
        )

        event = outcome.event
        assert event.node_id == "a"
        assert event.unit_type is UnitType.DRILL_SET
        assert event.score == 0.3
        assert event.delta_mastery_p == pytest.approx(outcome.state.mastery_p - state.mastery_p, abs=1e-4)
        assert event.delta_uncertainty < 0
        assert event.misconception_tag == "sign-error"
        assert event.created_at == now
