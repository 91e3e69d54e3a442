"""
MasteryEngine: one object holding a tuning profile and the critical
misconception policy, exposing every mastery operation bound to them.

This is the component the surrounding API layer calls.
"""
from __future__ import annotations

from collections.abc import Collection, Iterable, Mapping
from datetime import datetime

from brok.config import DEFAULT_CONFIG, MasteryConfig, Settings
from brok.mastery.evidence import calculate_decay_risk, calculate_evidence_strength
from brok.mastery.frontier import (
    calculate_node_bands,
    find_mastered_nodes,
    get_next_unit,
    select_frontier,
)
from brok.mastery.gating import (
    calculate_thread_progress,
    check_mastery,
    get_mastery_band,
    node_critical_misconceptions,
)
from brok.mastery.models import (
    AttemptOutcome,
    Evidence,
    FrontierCandidate,
    GateResult,
    MasteryBand,
    MasteryState,
    MasteryUpdate,
    SchedulerResult,
    SkillGraph,
    SkillNode,
    ThreadProgress,
    UnitType,
)
from brok.mastery.selection import calculate_priority, select_unit_type
from brok.mastery.updater import apply_attempt, update_mastery


class MasteryEngine:
    """
    Adaptive mastery engine bound to one configuration.

    Every method is pure: identical inputs (including ``now``) give identical
    outputs, and nothing here reads or writes persistent state.
    """

    def __init__(
        self,
        config: MasteryConfig = DEFAULT_CONFIG,
        critical_misconceptions: Collection[str] = (),
    ):
        """
        Initialize engine.

        Args:
            config: Tuning profile (thresholds, weights, format strengths)
            critical_misconceptions: Tags that block mastery while outstanding
        """
        self.config = config
        self.critical_misconceptions = frozenset(critical_misconceptions)

    @classmethod
    def from_settings(cls, settings: Settings) -> MasteryEngine:
        return cls(
            config=settings.get_mastery_config(),
            critical_misconceptions=settings.get_critical_misconceptions(),
        )

    # ------------------------------------------------------------------
    # Evidence and updates
    # ------------------------------------------------------------------

    def evidence_strength(self, evidence: Evidence) -> float:
        return calculate_evidence_strength(
            evidence.format_strength,
            evidence.difficulty,
            evidence.hint_count,
            evidence.retry_count,
        )

    def update(self, state: MasteryState, evidence: Evidence) -> MasteryUpdate:
        return update_mastery(state, evidence, config=self.config)

    def apply_attempt(
        self,
        state: MasteryState,
        evidence: Evidence,
        unit_type: UnitType | str,
        *,
        target_misconception: str | None = None,
        now: datetime | None = None,
        node: SkillNode | None = None,
    ) -> AttemptOutcome:
        """Apply an attempt; ``node`` adds its own critical misconceptions to the gate."""
        return apply_attempt(
            state,
            evidence,
            unit_type,
            target_misconception=target_misconception,
            now=now,
            config=self.config,
            critical_misconceptions=self.critical_for(node),
        )

    def decay_risk(self, state: MasteryState, now: datetime | None = None) -> float:
        return calculate_decay_risk(state, now)

    # ------------------------------------------------------------------
    # Gating
    # ------------------------------------------------------------------

    def critical_for(self, node: SkillNode | None = None) -> frozenset[str]:
        """Critical tags for a node: the engine-wide set plus the node's own."""
        return node_critical_misconceptions(node, self.critical_misconceptions)

    def gate(self, state: MasteryState, node: SkillNode | None = None) -> GateResult:
        return check_mastery(state, self.critical_for(node), config=self.config)

    def band(self, state: MasteryState, node: SkillNode | None = None) -> MasteryBand:
        return get_mastery_band(state.mastery_p, self.gate(state, node).is_mastered)

    def bands(self, graph: SkillGraph, states: Iterable[MasteryState]) -> dict[str, MasteryBand]:
        return calculate_node_bands(
            graph, states, config=self.config, critical_misconceptions=self.critical_misconceptions
        )

    def thread_progress(
        self,
        states: Iterable[MasteryState],
        graph: SkillGraph | None = None,
    ) -> ThreadProgress:
        return calculate_thread_progress(
            states, self.critical_misconceptions, config=self.config, graph=graph
        )

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def unit_type(self, state: MasteryState) -> UnitType:
        return select_unit_type(state, config=self.config)

    def priority(self, node: SkillNode, state: MasteryState, now: datetime | None = None) -> float:
        return calculate_priority(node, state, config=self.config, now=now)

    def frontier(
        self,
        graph: SkillGraph,
        states: Mapping[str, MasteryState],
        mastered_nodes: Collection[str],
        *,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> list[FrontierCandidate]:
        return select_frontier(graph, states, mastered_nodes, limit=limit, config=self.config, now=now)

    def mastered_nodes(
        self,
        states: Iterable[MasteryState],
        graph: SkillGraph | None = None,
    ) -> set[str]:
        if graph is None:
            return {state.node_id for state in states if self.gate(state).is_mastered}
        return find_mastered_nodes(
            graph, states, config=self.config, critical_misconceptions=self.critical_misconceptions
        )

    def next_unit(
        self,
        thread_id: str,
        graph: SkillGraph,
        states: Iterable[MasteryState],
        *,
        now: datetime | None = None,
    ) -> SchedulerResult:
        return get_next_unit(
            thread_id,
            graph,
            states,
            config=self.config,
            critical_misconceptions=self.critical_misconceptions,
            now=now,
        )

    def initial_state(self, learner_id: str, thread_id: str, node_id: str) -> MasteryState:
        return MasteryState.initial(
            learner_id, thread_id, node_id, decay_rate=self.config.default_decay_rate
        )
