"""
JobStore -- persistence of recurring scheduled operations.

Contract:
    ``JobStore`` is the scheduler/job-store collaborator the executor talks
    to: load, save, disable, enable, remove, list_due, plus the fire-claim
    lock (try_lock / unlock) and run bookkeeping (record_run /
    record_failure).  ``SqlJobStore`` implements it over
    ``ScheduledOperationModel``.

Architecture: dca_batch/services.  Imports from dca_batch.domain,
    dca_batch.models and kernel db helpers.

Invariants enforced:
    - ``save()`` never lowers ``app_version`` (VersionRegressionError) and
      never touches ``enabled``; enabling and disabling are explicit calls.
    - Writes against a removed row are no-ops, so user cancellation is safe
      while a fire is in flight.
    - ``try_lock()`` is a single compare-and-set UPDATE on ``locked_at``:
      at most one worker holds a job at a time; a lock older than
      ``lock_lifetime_seconds`` is considered abandoned and can be taken.
    - ``create()`` rejects a job whose interval cannot be parsed.
    - All timestamps from the injected Clock.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from dca_kernel.db.engine import session_scope
from dca_kernel.domain.clock import Clock, SystemClock
from dca_kernel.exceptions import (
    ScheduledOperationNotFoundError,
    ValidationError,
    VersionRegressionError,
)
from dca_kernel.logging_config import get_logger

from dca_batch.domain.schedule import parse_interval
from dca_batch.domain.types import OperationKind, ScheduledOperation
from dca_batch.models.operation import ScheduledOperationModel

logger = get_logger("batch.job_store")

DEFAULT_LOCK_LIFETIME_SECONDS = 600


@runtime_checkable
class JobStore(Protocol):
    """Scheduler/job-store collaborator."""

    def create(self, job: ScheduledOperation) -> ScheduledOperation: ...

    def load(self, job_id: UUID) -> ScheduledOperation: ...

    def save(self, job: ScheduledOperation) -> ScheduledOperation | None: ...

    def disable(self, job_id: UUID, reason: str) -> bool: ...

    def enable(self, job_id: UUID) -> bool: ...

    def remove(self, job_id: UUID) -> bool: ...

    def list_due(self, as_of: datetime, limit: int | None = None) -> tuple[ScheduledOperation, ...]: ...

    def list_by_owner(
        self, owner_address: str, kind: OperationKind | None = None,
    ) -> tuple[ScheduledOperation, ...]: ...

    def try_lock(self, job_id: UUID) -> bool: ...

    def unlock(self, job_id: UUID) -> None: ...

    def record_run(
        self, job_id: UUID, started_at: datetime, next_run_at: datetime | None,
    ) -> None: ...

    def record_failure(
        self, job_id: UUID, reason: str, next_run_at: datetime | None,
    ) -> None: ...


class SqlJobStore:
    """SQLAlchemy-backed ``JobStore``.

    Every call runs in its own short transaction from ``session_factory``;
    the executor never holds a database transaction across an external call.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        lock_lifetime_seconds: int = DEFAULT_LOCK_LIFETIME_SECONDS,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._lock_lifetime = lock_lifetime_seconds

    @property
    def lock_lifetime_seconds(self) -> int:
        return self._lock_lifetime

    # -------------------------------------------------------------------------
    # Create / read
    # -------------------------------------------------------------------------

    def create(self, job: ScheduledOperation) -> ScheduledOperation:
        """Insert a new job.

        Raises:
            ValidationError: If ``job.interval`` is not a valid interval.
        """
        validate_interval(job.interval)
        now = self._clock.now()
        with session_scope(self._session_factory) as session:
            model = ScheduledOperationModel.from_dto(job)
            model.created_at = now
            model.updated_at = now
            session.add(model)
            session.flush()
            created = model.to_dto()

        logger.info(
            "scheduled_operation_created",
            extra={
                "job_id": str(created.job_id),
                "kind": created.kind.value,
                "owner_address": created.owner_address,
                "app_id": created.app.app_id,
                "app_version": created.app.version,
                "interval": created.interval,
            },
        )
        return created

    def load(self, job_id: UUID) -> ScheduledOperation:
        """Raises ScheduledOperationNotFoundError if the job does not exist."""
        session = self._session_factory()
        try:
            model = session.get(ScheduledOperationModel, job_id)
            if model is None:
                raise ScheduledOperationNotFoundError(str(job_id))
            return model.to_dto()
        finally:
            session.close()

    def list_due(
        self, as_of: datetime, limit: int | None = None,
    ) -> tuple[ScheduledOperation, ...]:
        """Enabled jobs whose next fire time has passed and that nobody holds."""
        stale_before = as_of - timedelta(seconds=self._lock_lifetime)
        stmt = (
            select(ScheduledOperationModel)
            .where(
                ScheduledOperationModel.enabled == True,  # noqa: E712
                or_(
                    ScheduledOperationModel.next_run_at.is_(None),
                    ScheduledOperationModel.next_run_at <= as_of,
                ),
                or_(
                    ScheduledOperationModel.locked_at.is_(None),
                    ScheduledOperationModel.locked_at <= stale_before,
                ),
            )
            .order_by(ScheduledOperationModel.next_run_at)
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        session = self._session_factory()
        try:
            return tuple(m.to_dto() for m in session.execute(stmt).scalars().all())
        finally:
            session.close()

    def list_by_owner(
        self, owner_address: str, kind: OperationKind | None = None,
    ) -> tuple[ScheduledOperation, ...]:
        stmt = select(ScheduledOperationModel).where(
            ScheduledOperationModel.owner_address == owner_address.lower(),
        )
        if kind is not None:
            stmt = stmt.where(ScheduledOperationModel.kind == kind.value)
        stmt = stmt.order_by(ScheduledOperationModel.created_at)

        session = self._session_factory()
        try:
            return tuple(m.to_dto() for m in session.execute(stmt).scalars().all())
        finally:
            session.close()

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def save(self, job: ScheduledOperation) -> ScheduledOperation | None:
        """Persist the job's app version, parameters, name and interval.

        Returns the stored job, or None if it was removed meanwhile.

        Raises:
            VersionRegressionError: If ``job.app.version`` is below the
                stored version.
        """
        with session_scope(self._session_factory) as session:
            model = session.execute(
                select(ScheduledOperationModel)
                .where(ScheduledOperationModel.id == job.job_id)
                .with_for_update()
            ).scalar_one_or_none()

            if model is None:
                logger.warning(
                    "save_skipped_job_removed",
                    extra={"job_id": str(job.job_id)},
                )
                return None

            if job.app.version < model.app_version:
                raise VersionRegressionError(
                    str(job.job_id), model.app_version, job.app.version,
                )

            model.app_version = job.app.version
            model.parameters = dict(job.parameters) or None
            model.name = job.name
            model.interval = job.interval
            model.updated_at = self._clock.now()
            session.flush()
            return model.to_dto()

    def disable(self, job_id: UUID, reason: str) -> bool:
        """Pause a job with a reason.  Returns False if the job is gone."""
        changed = self._update(
            job_id,
            enabled=False,
            disabled_reason=reason,
            updated_at=self._clock.now(),
        )
        if changed:
            logger.warning(
                "scheduled_operation_disabled",
                extra={"job_id": str(job_id), "reason": reason},
            )
        return changed

    def enable(self, job_id: UUID) -> bool:
        """Explicit user action.  The executor never calls this."""
        changed = self._update(
            job_id,
            enabled=True,
            disabled_reason=None,
            updated_at=self._clock.now(),
        )
        if changed:
            logger.info("scheduled_operation_enabled", extra={"job_id": str(job_id)})
        return changed

    def remove(self, job_id: UUID) -> bool:
        with session_scope(self._session_factory) as session:
            model = session.get(ScheduledOperationModel, job_id)
            if model is None:
                return False
            session.delete(model)

        logger.info("scheduled_operation_removed", extra={"job_id": str(job_id)})
        return True

    # -------------------------------------------------------------------------
    # Fire claim
    # -------------------------------------------------------------------------

    def try_lock(self, job_id: UUID) -> bool:
        """Claim the job for one fire.  False if another worker holds it."""
        now = self._clock.now()
        stale_before = now - timedelta(seconds=self._lock_lifetime)
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(ScheduledOperationModel)
                .where(
                    ScheduledOperationModel.id == job_id,
                    or_(
                        ScheduledOperationModel.locked_at.is_(None),
                        ScheduledOperationModel.locked_at <= stale_before,
                    ),
                )
                .values(locked_at=now)
                .execution_options(synchronize_session=False)
            )
            acquired = result.rowcount == 1

        if not acquired:
            logger.debug("job_lock_busy", extra={"job_id": str(job_id)})
        return acquired

    def unlock(self, job_id: UUID) -> None:
        self._update(job_id, locked_at=None)

    # -------------------------------------------------------------------------
    # Run bookkeeping
    # -------------------------------------------------------------------------

    def record_run(
        self, job_id: UUID, started_at: datetime, next_run_at: datetime | None,
    ) -> None:
        self._update(
            job_id,
            last_run_at=started_at,
            last_finished_at=self._clock.now(),
            next_run_at=next_run_at,
        )

    def record_failure(
        self, job_id: UUID, reason: str, next_run_at: datetime | None,
    ) -> None:
        now = self._clock.now()
        self._update(
            job_id,
            last_run_at=now,
            last_finished_at=now,
            failed_at=now,
            fail_reason=reason,
            next_run_at=next_run_at,
        )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _update(self, job_id: UUID, **values) -> bool:
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(ScheduledOperationModel)
                .where(ScheduledOperationModel.id == job_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1


def validate_interval(interval: str) -> None:
    """Raises ValidationError if ``interval`` can never be scheduled."""
    try:
        parse_interval(interval)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
