"""
Evidence strength and decay risk.

Evidence strength turns one graded attempt into a scalar describing how much
that attempt should move the mastery estimate. Decay risk estimates how much
a node's mastery may have faded since it was last practised; it only boosts
scheduling priority and never lowers mastery_p directly.
"""
from __future__ import annotations

import math
from datetime import UTC, datetime

from brok.errors import EvidenceError
from brok.mastery.models import MasteryState

MIN_EVIDENCE_STRENGTH = 0.1
HINT_PENALTY_PER_HINT = 0.1
HINT_PENALTY_MAX = 0.5
RETRY_PENALTY_PER_RETRY = 0.15
RETRY_PENALTY_MAX = 0.45


def calculate_evidence_strength(
    format_strength: float,
    difficulty: float,
    hint_count: int = 0,
    retry_count: int = 0,
) -> float:
    """
    Calculate the evidence strength of one attempt.

    Formula:
        E = format_strength × (0.5 + 0.5 × difficulty)
        E ×= 1 − min(0.5, 0.1 × hints)
        E ×= 1 − min(0.45, 0.15 × retries)
        E = max(0.1, E)

    Args:
        format_strength: Evidence quality of the unit format (0-1)
        difficulty: Node difficulty (0-1)
        hint_count: Hints used during the attempt
        retry_count: Retries before the graded answer

    Returns:
        Evidence strength in [0.1, 1]

    Raises:
        EvidenceError: If an input is outside its documented range
    """
    if not 0.0 <= format_strength <= 1.0:
        raise EvidenceError(f"format_strength must be within [0, 1], got {format_strength}")
    if not 0.0 <= difficulty <= 1.0:
        raise EvidenceError(f"difficulty must be within [0, 1], got {difficulty}")
    if hint_count < 0 or retry_count < 0:
        raise EvidenceError(f"hint/retry counts must be >= 0, got {hint_count}/{retry_count}")

    strength = format_strength * (0.5 + 0.5 * difficulty)

    hint_penalty = min(HINT_PENALTY_MAX, hint_count * HINT_PENALTY_PER_HINT)
    strength *= 1 - hint_penalty

    retry_penalty = min(RETRY_PENALTY_MAX, retry_count * RETRY_PENALTY_PER_RETRY)
    strength *= 1 - retry_penalty

    return max(MIN_EVIDENCE_STRENGTH, strength)


def calculate_days_since(last_evidence: datetime, now: datetime | None = None) -> float:
    """
    Calculate days elapsed since a timestamp.

    Naive timestamps are treated as UTC. A timestamp in the future counts as
    zero days elapsed.

    Args:
        last_evidence: Timestamp of the last graded attempt
        now: Current time (defaults to UTC now)

    Returns:
        Days elapsed as float
    """
    if now is None:
        now = datetime.now(UTC)

    if last_evidence.tzinfo is None:
        last_evidence = last_evidence.replace(tzinfo=UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)

    delta = now - last_evidence
    return max(0.0, delta.total_seconds() / 86400.0)


def calculate_decay_risk(state: MasteryState, now: datetime | None = None) -> float:
    """
    Estimate how much of a node's mastery is at risk of fading.

    Formula: risk = clamp01(mastery_p × decay_rate × ln(1 + days_since_evidence))

    Higher mastery means more to lose, so risk scales with mastery_p.
    A node that has never received evidence has no decay risk.
    """
    if state.last_evidence_at is None:
        return 0.0

    days = calculate_days_since(state.last_evidence_at, now)
    risk = state.mastery_p * state.decay_rate * math.log1p(days)
    return min(1.0, max(0.0, risk))
