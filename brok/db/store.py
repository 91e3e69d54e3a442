"""
Mastery State Store.

Durable storage for one MasteryState per (learner, thread, node).

The engine computes a new state from a snapshot, so two concurrent attempts on
the same node would otherwise race (read-modify-write). Every write here is an
optimistic compare-and-swap on the ``version`` column: the UPDATE only matches
the row if its version is still the one the snapshot was read at. A stale
write raises StaleStateError and changes nothing.
"""

from __future__ import annotations

from collections.abc import Iterable

from loguru import logger
from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from brok.db.database import session_scope
from brok.db.models import EvidenceEventRow, MasteryStateRow
from brok.errors import StaleStateError, StateNotFoundError
from brok.mastery.models import AttemptOutcome, EvidenceEvent, MasteryState


def _key_clause(learner_id: str, thread_id: str, node_id: str):
    return and_(
        MasteryStateRow.learner_id == learner_id,
        MasteryStateRow.thread_id == thread_id,
        MasteryStateRow.node_id == node_id,
    )


class MasteryStore:
    """
    SQLAlchemy-backed mastery state persistence.

    Handles:
    - Initial state creation when a node enters a learner's thread
    - Version-checked state writes
    - Evidence event log
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        """
        Initialize the store.

        Args:
            session_factory: Session factory bound to an initialized database
        """
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, learner_id: str, thread_id: str, node_id: str) -> MasteryState | None:
        with session_scope(self._session_factory) as session:
            row = session.scalars(
                select(MasteryStateRow).where(_key_clause(learner_id, thread_id, node_id))
            ).one_or_none()
            return row.to_state() if row else None

    def require(self, learner_id: str, thread_id: str, node_id: str) -> MasteryState:
        state = self.get(learner_id, thread_id, node_id)
        if state is None:
            raise StateNotFoundError(learner_id, thread_id, node_id)
        return state

    def list_for_thread(self, learner_id: str, thread_id: str) -> list[MasteryState]:
        with session_scope(self._session_factory) as session:
            rows = session.scalars(
                select(MasteryStateRow)
                .where(
                    MasteryStateRow.learner_id == learner_id,
                    MasteryStateRow.thread_id == thread_id,
                )
                .order_by(MasteryStateRow.node_id)
            ).all()
            return [row.to_state() for row in rows]

    def list_events(self, learner_id: str, thread_id: str, node_id: str) -> list[EvidenceEvent]:
        with session_scope(self._session_factory) as session:
            rows = session.scalars(
                select(EvidenceEventRow)
                .where(
                    EvidenceEventRow.learner_id == learner_id,
                    EvidenceEventRow.thread_id == thread_id,
                    EvidenceEventRow.node_id == node_id,
                )
                .order_by(EvidenceEventRow.id)
            ).all()
            return [row.to_event() for row in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_initial(self, state: MasteryState) -> MasteryState:
        """
        Insert a freshly created state.

        Idempotent: if a state already exists for the key, the stored one is
        returned untouched. This also holds when a concurrent caller inserts
        the same key between the lookup and the insert.
        """
        try:
            with session_scope(self._session_factory) as session:
                existing = self._find_row(session, state.key)
                if existing is not None:
                    return existing.to_state()

                session.add(
                    MasteryStateRow(
                        learner_id=state.learner_id,
                        thread_id=state.thread_id,
                        node_id=state.node_id,
                        version=state.version,
                        **MasteryStateRow.values_from_state(state),
                    )
                )
        except IntegrityError:
            logger.debug(f"Mastery state {state.key} created concurrently, reading it back")
            return self.require(*state.key)
        logger.debug(f"Initialized mastery state {state.key}")
        return state

    def initialize_thread(
        self,
        learner_id: str,
        thread_id: str,
        node_ids: Iterable[str],
        decay_rate: float = 0.01,
    ) -> list[MasteryState]:
        """Create initial states for every node of a thread."""
        states = [
            self.create_initial(MasteryState.initial(learner_id, thread_id, node_id, decay_rate))
            for node_id in node_ids
        ]
        logger.info(f"Initialized {len(states)} mastery states for thread {thread_id}")
        return states

    def save(self, state: MasteryState) -> MasteryState:
        """
        Write a state computed from the snapshot at ``state.version``.

        Returns:
            The stored state with its new version

        Raises:
            StaleStateError: The row changed since the snapshot was read
            StateNotFoundError: No row exists for the key
        """
        with session_scope(self._session_factory) as session:
            self._compare_and_swap(session, state)
        return state.evolve(version=state.version + 1)

    def commit_attempt(self, outcome: AttemptOutcome) -> MasteryState:
        """Write an attempt's new state and its evidence event atomically."""
        with session_scope(self._session_factory) as session:
            self._compare_and_swap(session, outcome.state)
            session.add(EvidenceEventRow.from_event(outcome.event))
        logger.info(
            f"Recorded attempt on {outcome.state.node_id} for learner {outcome.state.learner_id}: "
            f"p={outcome.state.mastery_p:.4f} next_action={outcome.next_action}"
        )
        return outcome.state.evolve(version=outcome.state.version + 1)

    def _find_row(self, session: Session, key: tuple[str, str, str]) -> MasteryStateRow | None:
        return session.scalars(select(MasteryStateRow).where(_key_clause(*key))).one_or_none()

    def _compare_and_swap(self, session: Session, state: MasteryState) -> None:
        result = session.execute(
            update(MasteryStateRow)
            .where(_key_clause(*state.key), MasteryStateRow.version == state.version)
            .values(
                version=state.version + 1,
                updated_at=func.now(),
                **MasteryStateRow.values_from_state(state),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return

        exists = session.scalar(
            select(func.count()).select_from(MasteryStateRow).where(_key_clause(*state.key))
        )
        if not exists:
            raise StateNotFoundError(*state.key)

        logger.warning(f"Rejected stale write for {state.key} at version {state.version}")
        raise StaleStateError(*state.key, expected_version=state.version)
