"""
Mastery: adaptive mastery tracking and scheduling.

Components:
- evidence: evidence strength and decay risk
- updater: logit-space mastery update and attempt bookkeeping
- gating: multi-criterion mastery gate, bands and thread progress
- selection: unit-type decision table and priority scoring
- frontier: frontier selection and the next-unit scheduler
- engine: MasteryEngine facade bound to one configuration
"""
from brok.mastery.engine import MasteryEngine
from brok.mastery.evidence import calculate_decay_risk, calculate_evidence_strength
from brok.mastery.frontier import (
    build_prerequisite_map,
    calculate_node_bands,
    diagnose_blockage,
    find_mastered_nodes,
    find_prerequisite_cycle,
    get_next_unit,
    select_frontier,
)
from brok.mastery.gating import (
    calculate_thread_progress,
    check_mastery,
    check_prerequisites,
    get_mastery_band,
    node_critical_misconceptions,
)
from brok.mastery.models import (
    AttemptOutcome,
    Evidence,
    EvidenceEvent,
    FrontierCandidate,
    GateResult,
    MasteryBand,
    MasteryProgress,
    MasteryState,
    MasteryUpdate,
    MisconceptionEntry,
    NextUnit,
    PrerequisiteCheck,
    SchedulerResult,
    SkillEdge,
    SkillGraph,
    SkillNode,
    ThreadBlocked,
    ThreadCompleted,
    ThreadProgress,
    UnitType,
)
from brok.mastery.selection import (
    UNIT_TYPE_RULES,
    calculate_priority,
    explain_unit_type,
    select_unit_type,
)
from brok.mastery.updater import apply_attempt, update_mastery

__all__ = [
    # Engine
    "MasteryEngine",
    # Operations
    "calculate_evidence_strength",
    "calculate_decay_risk",
    "update_mastery",
    "apply_attempt",
    "check_mastery",
    "check_prerequisites",
    "get_mastery_band",
    "node_critical_misconceptions",
    "calculate_thread_progress",
    "UNIT_TYPE_RULES",
    "select_unit_type",
    "explain_unit_type",
    "calculate_priority",
    "build_prerequisite_map",
    "select_frontier",
    "find_prerequisite_cycle",
    "diagnose_blockage",
    "find_mastered_nodes",
    "calculate_node_bands",
    "get_next_unit",
    # Models
    "AttemptOutcome",
    "Evidence",
    "EvidenceEvent",
    "FrontierCandidate",
    "GateResult",
    "MasteryBand",
    "MasteryProgress",
    "MasteryState",
    "MasteryUpdate",
    "MisconceptionEntry",
    "NextUnit",
    "PrerequisiteCheck",
    "SchedulerResult",
    "SkillEdge",
    "SkillGraph",
    "SkillNode",
    "ThreadBlocked",
    "ThreadCompleted",
    "ThreadProgress",
    "UnitType",
]
