"""
Unit tests for the SQLAlchemy mastery state store.

Runs against in-memory SQLite; covers initial creation, version-checked
writes and the evidence event log.
"""

import pytest

from brok.errors import StaleStateError, StateNotFoundError
from brok.mastery import Evidence, MasteryState, UnitType, apply_attempt


def _initial(node_id="a"):
    return MasteryState.initial("learner-1", "thread-1", node_id)


class TestInitialStates:
    """Tests for state creation and reads."""

    def test_missing_state_is_none(self, store):
        assert store.get("learner-1", "thread-1", "a") is None

    def test_require_raises_for_missing_state(self, store):
        with pytest.raises(StateNotFoundError) as exc_info:
            store.require("learner-1", "thread-1", "a")
        assert exc_info.value.node_id == "a"

    def test_create_and_read_back(self, store):
        store.create_initial(_initial())
        assert store.require("learner-1", "thread-1", "a") == _initial()

    def test_create_initial_is_idempotent(self, store, now):
        stored = store.create_initial(_initial())
        store.save(stored.evolve(mastery_p=0.7, last_evidence_at=now))

        again = store.create_initial(_initial())

        assert again.mastery_p == 0.7
        assert again.version == 1

    def test_create_initial_after_concurrent_insert(self, store, monkeypatch, now):
        stored = store.create_initial(_initial())
        store.save(stored.evolve(mastery_p=0.7, last_evidence_at=now))
        # Another writer inserted the row between the existence check and the insert
        monkeypatch.setattr(store, "_find_row", lambda session, key: None)

        again = store.create_initial(_initial())

        assert again.mastery_p == 0.7
        assert again.version == 1
        assert len(store.list_for_thread("learner-1", "thread-1")) == 1

    def test_initialize_thread(self, store):
        states = store.initialize_thread("learner-1", "thread-1", ["c", "a", "b"], decay_rate=0.02)

        assert len(states) == 3
        listed = store.list_for_thread("learner-1", "thread-1")
        assert [s.node_id for s in listed] == ["a", "b", "c"]
        assert all(s.decay_rate == 0.02 for s in listed)

    def test_threads_are_isolated(self, store):
        store.initialize_thread("learner-1", "thread-1", ["a"])
        store.initialize_thread("learner-2", "thread-1", ["a", "b"])
        assert len(store.list_for_thread("learner-1", "thread-1")) == 1
        assert store.list_for_thread("learner-1", "thread-2") == []


class TestVersionedWrites:
    """Tests for optimistic compare-and-swap writes."""

    def test_save_bumps_version(self, store):
        state = store.create_initial(_initial())

        saved = store.save(state.evolve(mastery_p=0.6))

        assert saved.version == 1
        assert store.require("learner-1", "thread-1", "a") == saved

    def test_sets_and_timestamps_round_trip(self, store, now):
        state = store.create_initial(_initial())
        changed = state.evolve(
            unit_types_used=frozenset({UnitType.DRILL_SET, UnitType.ERROR_REVERSAL}),
            misconception_tags=frozenset({"sign-error"}),
            last_evidence_at=now,
            last_mastered_at=now,
        )

        saved = store.save(changed)
        loaded = store.require("learner-1", "thread-1", "a")

        assert loaded == saved
        assert loaded.last_evidence_at == now
        assert loaded.unit_types_used == frozenset({UnitType.DRILL_SET, UnitType.ERROR_REVERSAL})

    def test_stale_write_rejected(self, store):
        snapshot = store.create_initial(_initial())
        store.save(snapshot.evolve(mastery_p=0.6))

        with pytest.raises(StaleStateError) as exc_info:
            store.save(snapshot.evolve(mastery_p=0.4))

        assert exc_info.value.expected_version == 0
        current = store.require("learner-1", "thread-1", "a")
        assert current.mastery_p == 0.6
        assert current.version == 1

    def test_save_without_row_raises_not_found(self, store):
        with pytest.raises(StateNotFoundError):
            store.save(_initial())


class TestCommitAttempt:
    """Tests for atomically storing an attempt."""

    def _outcome(self, state, now, score=0.9):
        ev = Evidence(score=score, format_strength=0.5, difficulty=0.5, misconceptions_detected=["sign-error"])
        return apply_attempt(state, ev, UnitType.DRILL_SET, now=now)

    def test_commit_stores_state_and_event(self, store, now):
        state = store.create_initial(_initial())
        outcome = self._outcome(state, now)

        committed = store.commit_attempt(outcome)

        assert committed.version == 1
        assert store.require("learner-1", "thread-1", "a") == committed

        events = store.list_events("learner-1", "thread-1", "a")
        assert len(events) == 1
        assert events[0] == outcome.event

    def test_concurrent_attempts_one_wins(self, store, now):
        snapshot = store.create_initial(_initial())
        first = self._outcome(snapshot, now, score=0.9)
        second = self._outcome(snapshot, now, score=0.2)

        store.commit_attempt(first)
        with pytest.raises(StaleStateError):
            store.commit_attempt(second)

        # The losing attempt left no trace
        assert len(store.list_events("learner-1", "thread-1", "a")) == 1
        assert store.require("learner-1", "thread-1", "a").mastery_p == first.state.mastery_p

    def test_retry_after_conflict_succeeds(self, store, now):
        snapshot = store.create_initial(_initial())
        store.commit_attempt(self._outcome(snapshot, now))

        fresh = store.require("learner-1", "thread-1", "a")
        committed = store.commit_attempt(self._outcome(fresh, now, score=0.3))

        assert committed.version == 2
        assert committed.evidence_count == 2
        assert len(store.list_events("learner-1", "thread-1", "a")) == 2
