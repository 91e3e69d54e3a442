"""
Frontier selection and next-unit scheduling.

The frontier is the set of nodes a learner can work on right now: not yet
mastered, with an initialized mastery state, and with every prerequisite
mastered. Candidates are ranked by priority; the scheduler entry point
turns the ranking into "what should the learner do next".
"""
from __future__ import annotations

from collections import defaultdict
from collections.abc import Collection, Iterable, Mapping
from datetime import UTC, datetime

from loguru import logger

from brok.config import DEFAULT_CONFIG, MasteryConfig
from brok.mastery.gating import (
    check_mastery,
    check_prerequisites,
    get_mastery_band,
    node_critical_misconceptions,
)
from brok.mastery.models import (
    FrontierCandidate,
    MasteryBand,
    MasteryState,
    NextUnit,
    SchedulerResult,
    SkillGraph,
    ThreadBlocked,
    ThreadCompleted,
)
from brok.mastery.selection import calculate_priority, select_unit_type

# The chosen node plus two alternatives are reported for observability
REPORTED_ALTERNATIVES = 3

BLOCKED_GENERIC = "No available skills - check prerequisites"
BLOCKED_EMPTY_GRAPH = "Skill graph has no nodes"


def build_prerequisite_map(graph: SkillGraph) -> dict[str, set[str]]:
    """
    Map each node id to the ids it depends on.

    Combines prerequisite edges with each node's own ``prerequisites`` set.
    """
    prereq_map: dict[str, set[str]] = defaultdict(set)
    for edge in graph.edges:
        if edge.is_prerequisite:
            prereq_map[edge.to_node].add(edge.from_node)
    for node in graph.nodes:
        if node.prerequisites:
            prereq_map[node.id].update(node.prerequisites)
    return dict(prereq_map)


def select_frontier(
    graph: SkillGraph,
    states: Mapping[str, MasteryState],
    mastered_nodes: Collection[str],
    *,
    limit: int | None = None,
    config: MasteryConfig = DEFAULT_CONFIG,
    now: datetime | None = None,
) -> list[FrontierCandidate]:
    """
    Select learnable nodes ranked by priority.

    Args:
        graph: Skill graph (read-only)
        states: Mastery state per node id
        mastered_nodes: Node ids that currently pass the mastery gate
        limit: Maximum candidates returned (defaults to config.frontier_limit)
        config: Tuning profile
        now: Clock used for decay risk

    Returns:
        Candidates sorted by priority descending, ties broken by node id
    """
    if limit is None:
        limit = config.frontier_limit
    if now is None:
        now = datetime.now(UTC)

    prereq_map = build_prerequisite_map(graph)
    candidates: list[FrontierCandidate] = []

    for node in graph.nodes:
        if node.id in mastered_nodes:
            continue

        state = states.get(node.id)
        if state is None:
            # Not yet offered in this thread
            continue

        if not check_prerequisites(prereq_map.get(node.id, ()), mastered_nodes).can_start:
            continue

        candidates.append(
            FrontierCandidate(
                node_id=node.id,
                priority=calculate_priority(node, state, config=config, now=now),
                unit_type=select_unit_type(state, config=config),
                node=node,
                state=state,
            )
        )

    candidates.sort(key=lambda c: (-c.priority, c.node_id))
    logger.debug(f"Frontier: {len(candidates)} learnable of {len(graph.nodes)} nodes")
    return candidates[:limit]


def find_prerequisite_cycle(graph: SkillGraph) -> list[str] | None:
    """
    Find one prerequisite cycle, if any.

    Returns:
        Node ids along the cycle with the first id repeated at the end
        (``["a", "b", "a"]``), or None for an acyclic graph
    """
    prereq_map = build_prerequisite_map(graph)
    visiting, done = 1, 2
    status: dict[str, int] = {}

    for root in sorted(prereq_map):
        if status.get(root) == done:
            continue

        path: list[str] = [root]
        stack = [iter(sorted(prereq_map.get(root, ())))]
        status[root] = visiting

        while stack:
            child = next(stack[-1], None)
            if child is None:
                status[path.pop()] = done
                stack.pop()
                continue
            if status.get(child) == visiting:
                return path[path.index(child):] + [child]
            if status.get(child) != done:
                status[child] = visiting
                path.append(child)
                stack.append(iter(sorted(prereq_map.get(child, ()))))

    return None


def diagnose_blockage(
    graph: SkillGraph,
    states: Mapping[str, MasteryState],
    mastered_nodes: Collection[str],
) -> str:
    """Explain why no node is learnable even though the thread is incomplete."""
    cycle = find_prerequisite_cycle(graph)
    if cycle:
        return "Prerequisite cycle detected: " + " -> ".join(cycle)

    known = set(graph.node_ids())
    prereq_map = build_prerequisite_map(graph)
    dangling = sorted({p for deps in prereq_map.values() for p in deps} - known)
    if dangling:
        return "Prerequisites reference unknown skills: " + ", ".join(dangling)

    remaining = [node_id for node_id in graph.node_ids() if node_id not in mastered_nodes]
    uninitialized = [node_id for node_id in remaining if node_id not in states]
    locked = len(remaining) - len(uninitialized)
    return (
        f"{BLOCKED_GENERIC} ({locked} waiting on prerequisites, "
        f"{len(uninitialized)} not yet initialized)"
    )


def find_mastered_nodes(
    graph: SkillGraph,
    states: Iterable[MasteryState],
    *,
    config: MasteryConfig = DEFAULT_CONFIG,
    critical_misconceptions: Collection[str] = frozenset(),
) -> set[str]:
    """
    Node ids whose state passes the mastery gate.

    Each node is gated on the global critical tags plus the critical entries
    of its own misconception library.
    """
    mastered: set[str] = set()
    for state in states:
        critical = node_critical_misconceptions(graph.get_node(state.node_id), critical_misconceptions)
        if check_mastery(state, critical, config=config).is_mastered:
            mastered.add(state.node_id)
    return mastered


def calculate_node_bands(
    graph: SkillGraph,
    states: Iterable[MasteryState],
    *,
    config: MasteryConfig = DEFAULT_CONFIG,
    critical_misconceptions: Collection[str] = frozenset(),
) -> dict[str, MasteryBand]:
    """
    Display band for every node of the graph.

    A node that is not mastered and has an unmet prerequisite is LOCKED.
    Nodes without a state are banded as mastery 0.
    """
    state_map = {state.node_id: state for state in states}
    mastered = find_mastered_nodes(
        graph, state_map.values(), config=config, critical_misconceptions=critical_misconceptions
    )
    prereq_map = build_prerequisite_map(graph)

    bands: dict[str, MasteryBand] = {}
    for node in graph.nodes:
        state = state_map.get(node.id)
        bands[node.id] = get_mastery_band(
            state.mastery_p if state is not None else 0.0,
            is_mastered=node.id in mastered,
            is_locked=not check_prerequisites(prereq_map.get(node.id, ()), mastered).can_start,
        )
    return bands


def get_next_unit(
    thread_id: str,
    graph: SkillGraph,
    states: Iterable[MasteryState],
    *,
    config: MasteryConfig = DEFAULT_CONFIG,
    critical_misconceptions: Collection[str] = frozenset(),
    now: datetime | None = None,
) -> SchedulerResult:
    """
    Decide what a learner should do next in a thread.

    Returns one of:
    - ThreadCompleted: every node in the graph passes the mastery gate
    - ThreadBlocked: unfinished nodes exist but none is learnable
    - NextUnit: the top-priority node, its unit type and the runner-up candidates
    """
    if now is None:
        now = datetime.now(UTC)

    state_map = {state.node_id: state for state in states}
    mastered_nodes = find_mastered_nodes(
        graph, state_map.values(), config=config, critical_misconceptions=critical_misconceptions
    )

    node_ids = graph.node_ids()
    if not node_ids:
        logger.warning(f"Thread {thread_id} blocked: {BLOCKED_EMPTY_GRAPH}")
        return ThreadBlocked(reason=BLOCKED_EMPTY_GRAPH)

    mastered_in_graph = mastered_nodes.intersection(node_ids)
    if len(mastered_in_graph) == len(node_ids):
        logger.info(f"Thread {thread_id} complete: {len(node_ids)} nodes mastered")
        return ThreadCompleted(
            summary={
                "threadId": thread_id,
                "totalNodes": len(node_ids),
                "masteredNodes": len(mastered_in_graph),
                "completedAt": now.isoformat(),
            }
        )

    frontier = select_frontier(graph, state_map, mastered_nodes, config=config, now=now)
    if not frontier:
        reason = diagnose_blockage(graph, state_map, mastered_nodes)
        logger.warning(f"Thread {thread_id} blocked: {reason}")
        return ThreadBlocked(reason=reason)

    top = frontier[0]
    gate = check_mastery(
        top.state,
        node_critical_misconceptions(top.node, critical_misconceptions),
        config=config,
    )

    return NextUnit(
        node=top.node,
        unit_type=top.unit_type,
        mastery_state=top.state,
        mastery_progress=gate.progress,
        frontier=tuple(frontier[:REPORTED_ALTERNATIVES]),
    )
