"""
Domain records for the mastery engine.

Every record is a frozen pydantic model. Range constraints are declared on the
fields so that malformed input from the grading or content services is rejected
with a ValidationError at construction instead of being clamped later.

JSON produced by the surrounding services uses camelCase (and a few legacy
names such as ``node_id`` / ``from_node_id``); those are accepted as aliases.
``to_dict()`` produces the camelCase wire shape the API layer returns.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

Probability = Annotated[float, Field(ge=0.0, le=1.0)]
Count = Annotated[int, Field(ge=0)]


class UnitType(str, Enum):
    """Pedagogical format of a learning unit."""

    DIAGNOSTIC_MCQ = "diagnostic_mcq"
    MICRO_TEACH_THEN_CHECK = "micro_teach_then_check"
    DRILL_SET = "drill_set"
    APPLIED_FREE_RESPONSE = "applied_free_response"
    ERROR_REVERSAL = "error_reversal"

    @property
    def display_name(self) -> str:
        """Human-readable name."""
        return self.value.replace("_", " ").title()


class MasteryBand(str, Enum):
    """Display band for a node, used to colour the skill graph."""

    NOVICE = "novice"
    DEVELOPING = "developing"
    PROFICIENT = "proficient"
    MASTERED = "mastered"
    LOCKED = "locked"

    @property
    def color(self) -> str:
        """Hex colour for graph visualisation."""
        return {
            MasteryBand.NOVICE: "#6B7280",
            MasteryBand.DEVELOPING: "#F59E0B",
            MasteryBand.PROFICIENT: "#3B82F6",
            MasteryBand.MASTERED: "#10B981",
            MasteryBand.LOCKED: "#374151",
        }[self]

    @property
    def rich_style(self) -> str:
        """Rich style for CLI display."""
        return {
            MasteryBand.NOVICE: "dim",
            MasteryBand.DEVELOPING: "yellow",
            MasteryBand.PROFICIENT: "cyan",
            MasteryBand.MASTERED: "green",
            MasteryBand.LOCKED: "bright_black",
        }[self]


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)


# ============================================================================
# Skill graph (read-only input from the content generation service)
# ============================================================================


class MisconceptionEntry(_Record):
    tag: str = Field(..., min_length=1)
    description: str = ""
    severity: str = "normal"
    trigger_keywords: tuple[str, ...] = Field(
        default=(), validation_alias=AliasChoices("trigger_keywords", "triggerKeywords")
    )

    @property
    def is_critical(self) -> bool:
        return self.severity == "critical"


class SkillNode(_Record):
    """One skill in a learner's graph."""

    id: str = Field(..., min_length=1, validation_alias=AliasChoices("id", "node_id"))
    name: str = ""
    description: str = ""
    difficulty: Probability = 0.5
    weight: float = Field(default=1.0, gt=0.0)
    misconception_library: tuple[MisconceptionEntry, ...] = Field(
        default=(),
        validation_alias=AliasChoices(
            "misconception_library", "misconceptionLibrary", "misconceptions_library"
        ),
    )
    prerequisites: frozenset[str] = frozenset()

    def critical_tags(self) -> frozenset[str]:
        """Tags of library entries whose severity blocks mastery of this node."""
        return frozenset(entry.tag for entry in self.misconception_library if entry.is_critical)


class SkillEdge(_Record):
    """Directed dependency: ``to_node`` cannot start until ``from_node`` is mastered."""

    from_node: str = Field(..., validation_alias=AliasChoices("from_node", "from", "from_node_id"))
    to_node: str = Field(..., validation_alias=AliasChoices("to_node", "to", "to_node_id"))
    type: str = "prerequisite"

    @field_validator("type", mode="before")
    @classmethod
    def _untyped_is_prerequisite(cls, value: Any) -> Any:
        # Edges without a type are prerequisite edges
        return value or "prerequisite"

    @property
    def is_prerequisite(self) -> bool:
        return self.type == "prerequisite"


class SkillGraph(_Record):
    nodes: tuple[SkillNode, ...] = ()
    edges: tuple[SkillEdge, ...] = ()

    @model_validator(mode="after")
    def _unique_node_ids(self) -> SkillGraph:
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                raise ValueError(f"Duplicate node id in skill graph: {node.id}")
            seen.add(node.id)
        return self

    def node_ids(self) -> tuple[str, ...]:
        return tuple(node.id for node in self.nodes)

    def get_node(self, node_id: str) -> SkillNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


# ============================================================================
# Mastery state (one per learner, thread, node)
# ============================================================================


class MasteryState(_Record):
    """
    Mastery record for one (learner, thread, node).

    All fields are required. ``MasteryState.initial`` is the one place where
    the starting values for a node entering a thread are defined.
    """

    learner_id: str = Field(..., min_length=1)
    thread_id: str = Field(..., min_length=1)
    node_id: str = Field(..., min_length=1)

    mastery_p: Probability
    uncertainty: Probability
    stability: Probability

    confirmation_count: Count
    unit_types_used: frozenset[UnitType]
    has_applied_confirmation: bool
    misconception_tags: frozenset[str]

    evidence_count: Count
    last_evidence_at: datetime | None
    decay_rate: float = Field(..., ge=0.0)
    last_mastered_at: datetime | None

    # Optimistic concurrency token, bumped by the store on every write
    version: Count

    @classmethod
    def initial(
        cls,
        learner_id: str,
        thread_id: str,
        node_id: str,
        decay_rate: float = 0.01,
    ) -> MasteryState:
        """State of a node the first time it enters a learner's thread."""
        return cls(
            learner_id=learner_id,
            thread_id=thread_id,
            node_id=node_id,
            mastery_p=0.5,
            uncertainty=1.0,
            stability=0.0,
            confirmation_count=0,
            unit_types_used=frozenset(),
            has_applied_confirmation=False,
            misconception_tags=frozenset(),
            evidence_count=0,
            last_evidence_at=None,
            decay_rate=decay_rate,
            last_mastered_at=None,
            version=0,
        )

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.learner_id, self.thread_id, self.node_id)

    def evolve(self, **changes: Any) -> MasteryState:
        """Copy with changes applied, re-running field validation."""
        return type(self).model_validate({**self.model_dump(), **changes})

    def to_dict(self) -> dict[str, Any]:
        return {
            "learner_id": self.learner_id,
            "thread_id": self.thread_id,
            "node_id": self.node_id,
            "mastery_p": self.mastery_p,
            "uncertainty": self.uncertainty,
            "stability": self.stability,
            "confirmation_count": self.confirmation_count,
            "unit_types_used": sorted(t.value for t in self.unit_types_used),
            "has_applied_confirmation": self.has_applied_confirmation,
            "misconception_tags": sorted(self.misconception_tags),
            "evidence_count": self.evidence_count,
            "last_evidence_at": _iso(self.last_evidence_at),
            "decay_rate": self.decay_rate,
            "last_mastered_at": _iso(self.last_mastered_at),
            "version": self.version,
        }


class Evidence(_Record):
    """Graded attempt, as produced by the grading service."""

    score: Probability
    format_strength: Probability = Field(
        ..., validation_alias=AliasChoices("format_strength", "formatStrength")
    )
    difficulty: Probability
    misconceptions_detected: tuple[str, ...] = Field(
        default=(), validation_alias=AliasChoices("misconceptions_detected", "misconceptionsDetected")
    )
    hint_count: Count = Field(default=0, validation_alias=AliasChoices("hint_count", "hintCount"))
    retry_count: Count = Field(default=0, validation_alias=AliasChoices("retry_count", "retryCount"))


# ============================================================================
# Engine outputs
# ============================================================================


class MasteryUpdate(_Record):
    new_mastery_p: float
    new_uncertainty: float
    new_stability: float
    new_misconception_tags: frozenset[str]
    evidence_strength: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "newMasteryP": self.new_mastery_p,
            "newUncertainty": self.new_uncertainty,
            "newStability": self.new_stability,
            "newMisconceptionTags": sorted(self.new_misconception_tags),
            "evidenceStrength": self.evidence_strength,
        }


class MasteryProgress(_Record):
    mastery_p: float
    mastery_percent: int
    uncertainty: float
    uncertainty_percent: int
    stability: float
    stability_percent: int
    confirmations: int
    confirmations_required: int
    unit_types_used: int
    unit_types_required: int
    has_applied_confirmation: bool
    has_critical_misconception: bool
    misconception_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "masteryP": self.mastery_p,
            "masteryPercent": self.mastery_percent,
            "uncertainty": self.uncertainty,
            "uncertaintyPercent": self.uncertainty_percent,
            "stability": self.stability,
            "stabilityPercent": self.stability_percent,
            "confirmations": self.confirmations,
            "confirmationsRequired": self.confirmations_required,
            "unitTypesUsed": self.unit_types_used,
            "unitTypesRequired": self.unit_types_required,
            "hasAppliedConfirmation": self.has_applied_confirmation,
            "hasCriticalMisconception": self.has_critical_misconception,
            "misconceptionCount": self.misconception_count,
        }


class GateResult(_Record):
    is_mastered: bool
    blockers: tuple[str, ...]
    progress: MasteryProgress

    def to_dict(self) -> dict[str, Any]:
        return {
            "isMastered": self.is_mastered,
            "blockers": list(self.blockers),
            "progress": self.progress.to_dict(),
        }


class PrerequisiteCheck(_Record):
    can_start: bool
    unmet: tuple[str, ...] = ()


class ThreadProgress(_Record):
    total_nodes: int
    mastered_nodes: int
    in_progress_nodes: int
    not_started_nodes: int
    overall_progress: int
    avg_mastery: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalNodes": self.total_nodes,
            "masteredNodes": self.mastered_nodes,
            "inProgressNodes": self.in_progress_nodes,
            "notStartedNodes": self.not_started_nodes,
            "overallProgress": self.overall_progress,
            "avgMastery": self.avg_mastery,
        }


class FrontierCandidate(_Record):
    node_id: str
    priority: float
    unit_type: UnitType
    node: SkillNode
    state: MasteryState

    def to_dict(self) -> dict[str, Any]:
        return {"nodeId": self.node_id, "priority": self.priority, "unitType": self.unit_type.value}


class EvidenceEvent(_Record):
    """Audit record of one attempt's effect on a mastery state."""

    learner_id: str
    thread_id: str
    node_id: str
    unit_type: UnitType
    score: float
    delta_mastery_p: float
    delta_uncertainty: float
    delta_stability: float
    evidence_strength: float
    misconception_tag: str | None
    created_at: datetime


class AttemptOutcome(_Record):
    state: MasteryState
    update: MasteryUpdate
    event: EvidenceEvent
    gate: GateResult
    newly_mastered: bool
    next_action: Literal["skill_mastered", "continue_practice"]


# ============================================================================
# Scheduler results
# ============================================================================


class ThreadCompleted(_Record):
    completed: Literal[True] = True
    summary: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"completed": True, "summary": dict(self.summary)}


class ThreadBlocked(_Record):
    completed: Literal[False] = False
    blocked: Literal[True] = True
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"completed": False, "blocked": True, "reason": self.reason}


class NextUnit(_Record):
    completed: Literal[False] = False
    node: SkillNode
    unit_type: UnitType
    mastery_state: MasteryState
    mastery_progress: MasteryProgress
    frontier: tuple[FrontierCandidate, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "completed": False,
            "node": self.node.model_dump(mode="json"),
            "unitType": self.unit_type.value,
            "masteryState": self.mastery_state.to_dict(),
            "masteryProgress": self.mastery_progress.to_dict(),
            "frontier": [candidate.to_dict() for candidate in self.frontier],
        }


SchedulerResult = Union[ThreadCompleted, ThreadBlocked, NextUnit]


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
