"""
State store models.

SQLAlchemy models for mastery persistence:
- One mastery state row per (learner, thread, node), with an optimistic
  concurrency version
- An append-only evidence event log, one row per graded attempt
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, Text, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from brok.mastery.models import EvidenceEvent, MasteryState


class Base(DeclarativeBase):
    pass


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class MasteryStateRow(Base):
    """Mastery state per learner per thread per node."""

    __tablename__ = "mastery_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(Text, nullable=False)
    thread_id: Mapped[str] = mapped_column(Text, nullable=False)
    node_id: Mapped[str] = mapped_column(Text, nullable=False)

    # Probabilities (0-1 scale)
    mastery_p: Mapped[float] = mapped_column(Float, nullable=False)
    uncertainty: Mapped[float] = mapped_column(Float, nullable=False)
    stability: Mapped[float] = mapped_column(Float, nullable=False)

    # Gate bookkeeping
    confirmation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unit_types_used: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    has_applied_confirmation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    misconception_tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # Activity tracking
    evidence_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_evidence_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    decay_rate: Mapped[float] = mapped_column(Float, nullable=False)
    last_mastered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("learner_id", "thread_id", "node_id", name="uq_mastery_learner_thread_node"),
        Index("idx_mastery_state_thread", "learner_id", "thread_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<MasteryStateRow learner={self.learner_id} thread={self.thread_id} "
            f"node={self.node_id} p={self.mastery_p} v={self.version}>"
        )

    @staticmethod
    def values_from_state(state: MasteryState) -> dict[str, object]:
        """Column values for a state, excluding the key and version."""
        return {
            "mastery_p": state.mastery_p,
            "uncertainty": state.uncertainty,
            "stability": state.stability,
            "confirmation_count": state.confirmation_count,
            "unit_types_used": sorted(t.value for t in state.unit_types_used),
            "has_applied_confirmation": state.has_applied_confirmation,
            "misconception_tags": sorted(state.misconception_tags),
            "evidence_count": state.evidence_count,
            "last_evidence_at": state.last_evidence_at,
            "decay_rate": state.decay_rate,
            "last_mastered_at": state.last_mastered_at,
        }

    def to_state(self) -> MasteryState:
        return MasteryState(
            learner_id=self.learner_id,
            thread_id=self.thread_id,
            node_id=self.node_id,
            mastery_p=self.mastery_p,
            uncertainty=self.uncertainty,
            stability=self.stability,
            confirmation_count=self.confirmation_count,
            unit_types_used=frozenset(self.unit_types_used or ()),
            has_applied_confirmation=self.has_applied_confirmation,
            misconception_tags=frozenset(self.misconception_tags or ()),
            evidence_count=self.evidence_count,
            last_evidence_at=_aware(self.last_evidence_at),
            decay_rate=self.decay_rate,
            last_mastered_at=_aware(self.last_mastered_at),
            version=self.version,
        )


class EvidenceEventRow(Base):
    """One graded attempt's effect on a mastery state."""

    __tablename__ = "evidence_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(Text, nullable=False)
    thread_id: Mapped[str] = mapped_column(Text, nullable=False)
    node_id: Mapped[str] = mapped_column(Text, nullable=False)
    unit_type: Mapped[str] = mapped_column(Text, nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)

    delta_mastery_p: Mapped[float] = mapped_column(Float, nullable=False)
    delta_uncertainty: Mapped[float] = mapped_column(Float, nullable=False)
    delta_stability: Mapped[float] = mapped_column(Float, nullable=False)
    evidence_strength: Mapped[float] = mapped_column(Float, nullable=False)
    misconception_tag: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_evidence_events_state", "learner_id", "thread_id", "node_id"),)

    @classmethod
    def from_event(cls, event: EvidenceEvent) -> EvidenceEventRow:
        return cls(
            learner_id=event.learner_id,
            thread_id=event.thread_id,
            node_id=event.node_id,
            unit_type=event.unit_type.value,
            score=event.score,
            delta_mastery_p=event.delta_mastery_p,
            delta_uncertainty=event.delta_uncertainty,
            delta_stability=event.delta_stability,
            evidence_strength=event.evidence_strength,
            misconception_tag=event.misconception_tag,
            created_at=event.created_at,
        )

    def to_event(self) -> EvidenceEvent:
        return EvidenceEvent(
            learner_id=self.learner_id,
            thread_id=self.thread_id,
            node_id=self.node_id,
            unit_type=self.unit_type,
            score=self.score,
            delta_mastery_p=self.delta_mastery_p,
            delta_uncertainty=self.delta_uncertainty,
            delta_stability=self.delta_stability,
            evidence_strength=self.evidence_strength,
            misconception_tag=self.misconception_tag,
            created_at=_aware(self.created_at),
        )
