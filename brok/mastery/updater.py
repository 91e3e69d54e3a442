"""
Mastery updates.

``update_mastery`` is the core state transition: given a mastery state and one
graded attempt, it moves mastery_p in logit space, shrinks uncertainty, updates
the stability EMA and maintains the outstanding misconception set.

``apply_attempt`` wraps it with the bookkeeping that follows every graded
attempt (confirmations, format diversity, applied confirmation, evidence
counters) and re-evaluates the mastery gate on the result.
"""
from __future__ import annotations

import math
from collections.abc import Collection
from datetime import UTC, datetime

from loguru import logger

from brok.config import DEFAULT_CONFIG, MasteryConfig
from brok.mastery.evidence import calculate_evidence_strength
from brok.mastery.gating import check_mastery
from brok.mastery.models import (
    AttemptOutcome,
    Evidence,
    EvidenceEvent,
    MasteryState,
    MasteryUpdate,
    UnitType,
)

STORAGE_PRECISION = 4


def _logit(p: float) -> float:
    return math.log(p / (1 - p))


def _sigmoid(z: float) -> float:
    return 1 / (1 + math.exp(-z))


def update_mastery(
    state: MasteryState,
    evidence: Evidence,
    *,
    config: MasteryConfig = DEFAULT_CONFIG,
) -> MasteryUpdate:
    """
    Compute the mastery state transition for one graded attempt.

    Algorithm:
        1. E = evidence strength of the attempt
        2. lr = LR_BASE × E × (0.5 + 0.5 × uncertainty)
        3. z = logit(clamp(p, 0.001, 0.999))
        4. target = 2 × score − 1
        5. p' = sigmoid(z + lr × target)
        6. p' capped at 0.75 if misconceptions were detected
        7. u' = max(0, u − U_DECAY × E)
        8. s' = EMA toward 1 on a clean pass, toward 0 otherwise
        9. tags' = tags ∪ detected; cleared entirely on a clean score >= 0.9

    Args:
        state: Current mastery state
        evidence: Graded attempt
        config: Tuning profile

    Returns:
        MasteryUpdate with probability/strength fields rounded to 4 places
    """
    strength = calculate_evidence_strength(
        evidence.format_strength,
        evidence.difficulty,
        evidence.hint_count,
        evidence.retry_count,
    )

    # Larger steps while the estimate is still uncertain
    learning_rate = config.lr_base * strength * (0.5 + 0.5 * state.uncertainty)

    low, high = config.p_clamp
    clamped_p = min(high, max(low, state.mastery_p))
    target = 2 * evidence.score - 1
    new_p = _sigmoid(_logit(clamped_p) + learning_rate * target)

    detected = frozenset(evidence.misconceptions_detected)
    if detected:
        # Right answer for the wrong reason never yields full mastery
        new_p = min(new_p, config.misconception_cap)

    new_uncertainty = max(0.0, state.uncertainty - config.u_decay * strength)

    passed = evidence.score >= config.pass_score and not detected
    alpha = config.stability_alpha
    if passed:
        new_stability = alpha + (1 - alpha) * state.stability
    else:
        new_stability = (1 - alpha) * state.stability

    new_tags = state.misconception_tags | detected
    if evidence.score >= config.amnesty_score and not detected:
        # A clean strong attempt clears every outstanding tag, including
        # ones unrelated to this attempt.
        new_tags = frozenset()

    update = MasteryUpdate(
        new_mastery_p=round(new_p, STORAGE_PRECISION),
        new_uncertainty=round(new_uncertainty, STORAGE_PRECISION),
        new_stability=round(new_stability, STORAGE_PRECISION),
        new_misconception_tags=new_tags,
        evidence_strength=round(strength, STORAGE_PRECISION),
    )

    logger.debug(
        f"Mastery update node={state.node_id}: p {state.mastery_p:.4f}->{update.new_mastery_p:.4f} "
        f"u {state.uncertainty:.4f}->{update.new_uncertainty:.4f} "
        f"s {state.stability:.4f}->{update.new_stability:.4f} E={update.evidence_strength:.4f}"
    )

    return update


def apply_attempt(
    state: MasteryState,
    evidence: Evidence,
    unit_type: UnitType | str,
    *,
    target_misconception: str | None = None,
    now: datetime | None = None,
    config: MasteryConfig = DEFAULT_CONFIG,
    critical_misconceptions: Collection[str] = frozenset(),
) -> AttemptOutcome:
    """
    Apply one graded attempt to a mastery state.

    Beyond ``update_mastery`` this:
    - counts a confirmation when score >= 0.70
    - records the unit format in unit_types_used
    - sets has_applied_confirmation on a confirmed applied_free_response
    - removes ``target_misconception`` after a successful error_reversal
    - bumps evidence_count and last_evidence_at
    - stamps last_mastered_at the first time the gate passes

    The returned state keeps the input ``version``; the store bumps it when
    the write is accepted.

    Args:
        state: Current mastery state (snapshot read from the store)
        evidence: Graded attempt
        unit_type: Format of the unit that was attempted
        target_misconception: Misconception an error_reversal unit addressed
        now: Attempt timestamp (defaults to UTC now)
        config: Tuning profile
        critical_misconceptions: Tags that block mastery

    Returns:
        AttemptOutcome with the new state, update, audit event and gate result
    """
    unit_type = UnitType(unit_type)
    if now is None:
        now = datetime.now(UTC)

    update = update_mastery(state, evidence, config=config)

    is_confirmation = evidence.score >= config.confirmation_score
    confirmation_count = state.confirmation_count + (1 if is_confirmation else 0)

    has_applied_confirmation = state.has_applied_confirmation or (
        unit_type is UnitType.APPLIED_FREE_RESPONSE and is_confirmation
    )

    misconception_tags = update.new_misconception_tags
    if unit_type is UnitType.ERROR_REVERSAL and is_confirmation and target_misconception:
        misconception_tags = misconception_tags - {target_misconception}

    new_state = state.evolve(
        mastery_p=update.new_mastery_p,
        uncertainty=update.new_uncertainty,
        stability=update.new_stability,
        confirmation_count=confirmation_count,
        unit_types_used=state.unit_types_used | {unit_type},
        has_applied_confirmation=has_applied_confirmation,
        misconception_tags=misconception_tags,
        evidence_count=state.evidence_count + 1,
        last_evidence_at=now,
    )

    gate = check_mastery(new_state, critical_misconceptions, config=config)
    newly_mastered = gate.is_mastered and state.last_mastered_at is None
    if newly_mastered:
        new_state = new_state.evolve(last_mastered_at=now)
        logger.info(f"Node {state.node_id} mastered by learner {state.learner_id}")

    event = EvidenceEvent(
        learner_id=state.learner_id,
        thread_id=state.thread_id,
        node_id=state.node_id,
        unit_type=unit_type,
        score=evidence.score,
        delta_mastery_p=round(new_state.mastery_p - state.mastery_p, STORAGE_PRECISION),
        delta_uncertainty=round(new_state.uncertainty - state.uncertainty, STORAGE_PRECISION),
        delta_stability=round(new_state.stability - state.stability, STORAGE_PRECISION),
        evidence_strength=update.evidence_strength,
        misconception_tag=evidence.misconceptions_detected[0] if evidence.misconceptions_detected else None,
        created_at=now,
    )

    return AttemptOutcome(
        state=new_state,
        update=update,
        event=event,
        gate=gate,
        newly_mastered=newly_mastered,
        next_action="skill_mastered" if gate.is_mastered else "continue_practice",
    )
