"""
ORM model for recurring scheduled operations.

Contract:
    ScheduledOperationModel persists one row per recurring job: its kind,
    owner, delegated app reference, parameters and scheduling metadata.
    ``to_dto()`` / ``from_dto()`` round-trip with ``ScheduledOperation``.

Architecture: dca_batch/models. Imports from dca_kernel.db.base only.

Invariants enforced:
    - ``app_version`` never decreases (guarded by the job store).
    - ``enabled`` is only changed by disable/enable, never by save.
    - ``locked_at`` marks a fire in flight (compare-and-set by the store).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.types import JSON
from sqlalchemy.orm import Mapped, mapped_column

from dca_kernel.db.base import TimestampedBase, as_utc

if TYPE_CHECKING:
    from dca_batch.domain.types import ScheduledOperation


class ScheduledOperationModel(TimestampedBase):
    """Persistent recurring job."""

    __tablename__ = "scheduled_operations"

    __table_args__ = (
        Index("ix_scheduled_operations_enabled_next", "enabled", "next_run_at"),
        Index("ix_scheduled_operations_owner_kind", "owner_address", "kind"),
    )

    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    owner_address: Mapped[str] = mapped_column(String(42), nullable=False)
    app_id: Mapped[int] = mapped_column(Integer, nullable=False)
    app_version: Mapped[int] = mapped_column(Integer, nullable=False)
    parameters: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    interval: Mapped[str] = mapped_column(String(50), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    disabled_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_run_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    last_run_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    last_finished_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    failed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    fail_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def to_dto(self) -> ScheduledOperation:
        from dca_batch.domain.types import OperationKind, ScheduledOperation
        from dca_kernel.domain.authorization import AppReference

        return ScheduledOperation(
            job_id=self.id,
            kind=OperationKind(self.kind),
            owner_address=self.owner_address,
            app=AppReference(app_id=self.app_id, version=self.app_version),
            parameters=dict(self.parameters or {}),
            name=self.name,
            interval=self.interval,
            enabled=self.enabled,
            next_run_at=as_utc(self.next_run_at),
            last_run_at=as_utc(self.last_run_at),
            last_finished_at=as_utc(self.last_finished_at),
            failed_at=as_utc(self.failed_at),
            fail_reason=self.fail_reason,
            disabled_reason=self.disabled_reason,
            locked_at=as_utc(self.locked_at),
            created_at=as_utc(self.created_at),
        )

    @classmethod
    def from_dto(cls, dto: ScheduledOperation) -> ScheduledOperationModel:
        return cls(
            id=dto.job_id,
            kind=dto.kind.value,
            name=dto.name,
            owner_address=dto.owner_address,
            app_id=dto.app.app_id,
            app_version=dto.app.version,
            parameters=dto.parameters or None,
            interval=dto.interval,
            enabled=dto.enabled,
            disabled_reason=dto.disabled_reason,
            next_run_at=dto.next_run_at,
            last_run_at=dto.last_run_at,
            last_finished_at=dto.last_finished_at,
            failed_at=dto.failed_at,
            fail_reason=dto.fail_reason,
            locked_at=dto.locked_at,
        )
