"""
Mastery gating.

A node is MASTERED only when every one of these holds:
- mastery_p >= 0.90 (reliable performance is likely)
- uncertainty <= 0.25 (the estimate itself is trustworthy)
- stability >= 0.70 (clean passes are consistent)
- confirmation_count >= 3
- at least 2 distinct unit formats used
- at least one applied confirmation
- no critical misconception outstanding

Each unmet condition yields one blocker message, worded for the learner.
"""
from __future__ import annotations

import math
from collections.abc import Collection, Iterable

from brok.config import DEFAULT_CONFIG, MasteryConfig
from brok.mastery.models import (
    GateResult,
    MasteryBand,
    MasteryProgress,
    MasteryState,
    PrerequisiteCheck,
    SkillGraph,
    SkillNode,
    ThreadProgress,
)

PROFICIENT_BAND_FLOOR = 0.80
DEVELOPING_BAND_FLOOR = 0.50


def _percent(value: float) -> int:
    """Round a 0-1 value to a whole percentage, halves rounding up."""
    return int(math.floor(value * 100 + 0.5))


def node_critical_misconceptions(
    node: SkillNode | None,
    critical_misconceptions: Collection[str] = frozenset(),
) -> frozenset[str]:
    """Globally critical tags plus the critical entries of the node's own library."""
    tags = frozenset(critical_misconceptions)
    return (tags | node.critical_tags()) if node is not None else tags


def check_mastery(
    state: MasteryState,
    critical_misconceptions: Collection[str] = frozenset(),
    *,
    config: MasteryConfig = DEFAULT_CONFIG,
) -> GateResult:
    """
    Evaluate the mastery gate for one node.

    Args:
        state: Current mastery state
        critical_misconceptions: Tags that block mastery while outstanding
        config: Tuning profile

    Returns:
        GateResult with is_mastered, blockers (in condition order) and progress
    """
    blockers: list[str] = []

    if state.mastery_p < config.p_master:
        blockers.append(
            f"Mastery {_percent(state.mastery_p)}% < {_percent(config.p_master)}% required"
        )

    if state.uncertainty > config.u_max:
        blockers.append("Need more practice to reduce uncertainty")

    if state.stability < config.s_min:
        blockers.append("Need more consistent performance")

    if state.confirmation_count < config.k_confirmations:
        blockers.append(f"{state.confirmation_count}/{config.k_confirmations} confirmations")

    unit_types_count = len(state.unit_types_used)
    if unit_types_count < config.min_unit_types:
        blockers.append(f"Try {config.min_unit_types - unit_types_count} more question types")

    if not state.has_applied_confirmation:
        blockers.append("Need applied practice")

    has_critical = not state.misconception_tags.isdisjoint(critical_misconceptions)
    if has_critical:
        blockers.append("Clear misconceptions first")

    progress = MasteryProgress(
        mastery_p=state.mastery_p,
        mastery_percent=_percent(state.mastery_p),
        uncertainty=state.uncertainty,
        uncertainty_percent=_percent(state.uncertainty),
        stability=state.stability,
        stability_percent=_percent(state.stability),
        confirmations=state.confirmation_count,
        confirmations_required=config.k_confirmations,
        unit_types_used=unit_types_count,
        unit_types_required=config.min_unit_types,
        has_applied_confirmation=state.has_applied_confirmation,
        has_critical_misconception=has_critical,
        misconception_count=len(state.misconception_tags),
    )

    return GateResult(is_mastered=not blockers, blockers=tuple(blockers), progress=progress)


def check_prerequisites(
    prerequisites: Iterable[str],
    mastered_nodes: Collection[str],
) -> PrerequisiteCheck:
    """Check whether every prerequisite of a node has been mastered."""
    unmet = tuple(sorted(p for p in set(prerequisites) if p not in mastered_nodes))
    return PrerequisiteCheck(can_start=not unmet, unmet=unmet)


def get_mastery_band(
    mastery_p: float,
    is_mastered: bool = False,
    is_locked: bool = False,
) -> MasteryBand:
    """
    Display band for a node.

    A gated node is always MASTERED regardless of its probability. A node
    with unmet prerequisites is LOCKED. Otherwise the band is derived from
    mastery_p alone.
    """
    if is_mastered:
        return MasteryBand.MASTERED
    if is_locked:
        return MasteryBand.LOCKED
    if mastery_p >= PROFICIENT_BAND_FLOOR:
        return MasteryBand.PROFICIENT
    if mastery_p >= DEVELOPING_BAND_FLOOR:
        return MasteryBand.DEVELOPING
    return MasteryBand.NOVICE


def calculate_thread_progress(
    states: Iterable[MasteryState],
    critical_misconceptions: Collection[str] = frozenset(),
    *,
    config: MasteryConfig = DEFAULT_CONFIG,
    graph: SkillGraph | None = None,
) -> ThreadProgress:
    """
    Summarise mastery across every state of a thread.

    With a graph, only states of its nodes are counted and each node is gated
    on its own critical misconceptions as well as the global ones.
    """
    states = list(states)
    if graph is not None:
        node_ids = set(graph.node_ids())
        states = [state for state in states if state.node_id in node_ids]
    if not states:
        return ThreadProgress(
            total_nodes=0,
            mastered_nodes=0,
            in_progress_nodes=0,
            not_started_nodes=0,
            overall_progress=0,
            avg_mastery=0,
        )

    mastered = in_progress = not_started = 0
    total_mastery = 0.0

    for state in states:
        total_mastery += state.mastery_p
        node = graph.get_node(state.node_id) if graph is not None else None
        critical = node_critical_misconceptions(node, critical_misconceptions)
        if check_mastery(state, critical, config=config).is_mastered:
            mastered += 1
        elif state.evidence_count > 0:
            in_progress += 1
        else:
            not_started += 1

    return ThreadProgress(
        total_nodes=len(states),
        mastered_nodes=mastered,
        in_progress_nodes=in_progress,
        not_started_nodes=not_started,
        overall_progress=_percent(mastered / len(states)),
        avg_mastery=_percent(total_mastery / len(states)),
    )
