"""
ExecutionRecordStore -- idempotent append of one record per on-chain submission.

Responsibility:
    Persists ``ExecutionRecord`` rows after a successful execute call and
    answers lookups by transaction hash and by originating schedule.

Architecture position:
    Kernel > Services.  Owns its own short transaction per call through the
    injected session factory, so a failed record write can never roll back
    anything the executor already did.

Invariants enforced:
    - ``tx_hash`` is unique.  A second insert for the same hash raises
      ``DuplicateExecutionRecordError`` and leaves the first row untouched.
    - ``created_at`` comes from the injected Clock.

Failure modes:
    - DuplicateExecutionRecordError: tx_hash already recorded (pre-check or
      IntegrityError race between two writers).
    - PersistenceFailureError: any other database error during the write.
"""

from __future__ import annotations

from typing import Callable, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from dca_kernel.db.engine import session_scope
from dca_kernel.domain.clock import Clock, SystemClock
from dca_kernel.domain.records import ExecutionRecord
from dca_kernel.exceptions import (
    DuplicateExecutionRecordError,
    PersistenceFailureError,
)
from dca_kernel.logging_config import get_logger
from dca_kernel.models.execution_record import ExecutionRecordModel

logger = get_logger("services.execution_records")


@runtime_checkable
class ExecutionRecordStore(Protocol):
    """Persistence collaborator for execution records."""

    def insert(self, record: ExecutionRecord) -> ExecutionRecord: ...

    def get_by_tx_hash(self, tx_hash: str) -> ExecutionRecord | None: ...

    def list_for_schedule(self, schedule_id: UUID) -> tuple[ExecutionRecord, ...]: ...


class SqlExecutionRecordStore:
    """SQLAlchemy-backed ``ExecutionRecordStore``."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def insert(self, record: ExecutionRecord) -> ExecutionRecord:
        """Append ``record``.

        Raises:
            DuplicateExecutionRecordError: tx_hash already recorded.
            PersistenceFailureError: the write failed for any other reason.
        """
        try:
            with session_scope(self._session_factory) as session:
                existing = session.execute(
                    select(ExecutionRecordModel.id).where(
                        ExecutionRecordModel.tx_hash == record.tx_hash,
                    )
                ).scalar_one_or_none()
                if existing is not None:
                    raise DuplicateExecutionRecordError(record.tx_hash)

                model = ExecutionRecordModel.from_dto(record)
                model.created_at = record.created_at or self._clock.now()
                model.updated_at = model.created_at
                session.add(model)
                session.flush()
                stored = model.to_dto()
        except IntegrityError:
            raise DuplicateExecutionRecordError(record.tx_hash) from None
        except SQLAlchemyError as exc:
            raise PersistenceFailureError(record.tx_hash, str(exc)) from exc

        logger.info(
            "execution_record_persisted",
            extra={
                "record_id": str(stored.record_id),
                "schedule_id": str(stored.schedule_id),
                "tx_hash": stored.tx_hash,
                "kind": stored.kind,
            },
        )
        return stored

    def get_by_tx_hash(self, tx_hash: str) -> ExecutionRecord | None:
        session = self._session_factory()
        try:
            model = session.execute(
                select(ExecutionRecordModel).where(
                    ExecutionRecordModel.tx_hash == tx_hash,
                )
            ).scalar_one_or_none()
            return model.to_dto() if model is not None else None
        finally:
            session.close()

    def list_for_schedule(self, schedule_id: UUID) -> tuple[ExecutionRecord, ...]:
        """All records of one scheduled operation, oldest first."""
        session = self._session_factory()
        try:
            models = session.execute(
                select(ExecutionRecordModel)
                .where(ExecutionRecordModel.schedule_id == schedule_id)
                .order_by(ExecutionRecordModel.created_at)
            ).scalars().all()
            return tuple(m.to_dto() for m in models)
        finally:
            session.close()
