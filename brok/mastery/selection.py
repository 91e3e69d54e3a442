"""
Unit-type selection and frontier priority.

Unit-type selection is an ordered decision table: rules are evaluated top to
bottom and the first matching rule decides the next activity format.

Priority scoring ranks learnable nodes; a higher score means the node is more
urgent to practise next.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from brok.config import DEFAULT_CONFIG, MasteryConfig
from brok.mastery.evidence import calculate_decay_risk
from brok.mastery.models import MasteryState, SkillNode, UnitType

MISCONCEPTION_UNIT_WEIGHT = 0.1


@dataclass(frozen=True)
class UnitTypeRule:
    """One row of the unit-type decision table."""

    name: str
    applies: Callable[[MasteryState, MasteryConfig], bool]
    choose: Callable[[MasteryState, MasteryConfig], UnitType]


def _first_unused_format(state: MasteryState, config: MasteryConfig) -> UnitType | None:
    for name in config.variety_order:
        unit_type = UnitType(name)
        if unit_type not in state.unit_types_used:
            return unit_type
    return None


UNIT_TYPE_RULES: tuple[UnitTypeRule, ...] = (
    UnitTypeRule(
        name="fix_misconceptions",
        applies=lambda s, c: bool(s.misconception_tags),
        choose=lambda s, c: UnitType.ERROR_REVERSAL,
    ),
    UnitTypeRule(
        name="reduce_uncertainty",
        applies=lambda s, c: s.uncertainty > c.uncertainty_high,
        choose=lambda s, c: UnitType.DIAGNOSTIC_MCQ,
    ),
    UnitTypeRule(
        name="teach_low_mastery",
        applies=lambda s, c: s.mastery_p < c.mastery_low,
        choose=lambda s, c: UnitType.MICRO_TEACH_THEN_CHECK,
    ),
    UnitTypeRule(
        name="practice_mid_mastery",
        applies=lambda s, c: s.mastery_p < c.mastery_mid,
        choose=lambda s, c: UnitType.DRILL_SET,
    ),
    UnitTypeRule(
        name="applied_confirmation",
        applies=lambda s, c: not s.has_applied_confirmation,
        choose=lambda s, c: UnitType.APPLIED_FREE_RESPONSE,
    ),
    UnitTypeRule(
        name="format_variety",
        applies=lambda s, c: _first_unused_format(s, c) is not None,
        choose=lambda s, c: _first_unused_format(s, c),
    ),
    UnitTypeRule(
        name="default_drill",
        applies=lambda s, c: True,
        choose=lambda s, c: UnitType.DRILL_SET,
    ),
)


def explain_unit_type(
    state: MasteryState,
    *,
    config: MasteryConfig = DEFAULT_CONFIG,
    rules: tuple[UnitTypeRule, ...] = UNIT_TYPE_RULES,
) -> tuple[str, UnitType]:
    """Return the name of the rule that fired and the unit type it chose."""
    for rule in rules:
        if rule.applies(state, config):
            return rule.name, rule.choose(state, config)
    # The table ends with an unconditional rule
    raise LookupError("No unit-type rule matched")


def select_unit_type(
    state: MasteryState,
    *,
    config: MasteryConfig = DEFAULT_CONFIG,
) -> UnitType:
    """Select the next activity format for a node."""
    return explain_unit_type(state, config=config)[1]


def calculate_priority(
    node: SkillNode,
    state: MasteryState,
    *,
    config: MasteryConfig = DEFAULT_CONFIG,
    now: datetime | None = None,
) -> float:
    """
    Calculate the practice priority for a node.

    Formula:
        priority = weight × (1 − p)
                 + λ × uncertainty
                 + μ × decay_risk
                 + ν × (misconception_count × 0.1)

    Args:
        node: Node metadata (weight is the importance multiplier)
        state: Mastery state for the node
        config: Tuning profile (λ, μ, ν)
        now: Clock used for decay risk (defaults to UTC now)

    Returns:
        Priority score (higher = practise sooner)
    """
    base = node.weight * (1 - state.mastery_p)
    uncertainty_boost = config.lambda_uncertainty * state.uncertainty
    decay_boost = config.mu_decay * calculate_decay_risk(state, now)
    misconception_boost = config.nu_misconception * (
        len(state.misconception_tags) * MISCONCEPTION_UNIT_WEIGHT
    )
    return base + uncertainty_boost + decay_boost + misconception_boost
