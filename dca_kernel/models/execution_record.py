"""
ORM model for execution records.

Contract:
    ExecutionRecordModel persists one row per successful on-chain submission,
    with ``to_dto()`` / ``from_dto()`` round-trip methods.

Architecture: dca_kernel/models.  Imports from dca_kernel.db.base only.

Invariants enforced:
    - ``tx_hash`` is UNIQUE: replaying a fire in persistence can never
      create a second record for the same transaction.
    - ``schedule_id`` is indexed but carries no foreign key, so removing a
      scheduled operation never blocks the insert of an in-flight fire.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from dca_kernel.db.base import TimestampedBase, UUIDString, as_utc

if TYPE_CHECKING:
    from dca_kernel.domain.records import ExecutionRecord


class ExecutionRecordModel(TimestampedBase):
    __tablename__ = "execution_records"

    __table_args__ = (
        Index("ix_execution_records_schedule_created", "schedule_id", "created_at"),
        Index("ix_execution_records_owner_created", "owner_address", "created_at"),
    )

    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    owner_address: Mapped[str] = mapped_column(String(42), nullable=False)
    schedule_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    tx_hash: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)
    terms: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    def to_dto(self) -> ExecutionRecord:
        from dca_kernel.domain.records import ExecutionRecord

        return ExecutionRecord(
            record_id=self.id,
            kind=self.kind,
            owner_address=self.owner_address,
            schedule_id=self.schedule_id,
            tx_hash=self.tx_hash,
            terms=self.terms or {},
            created_at=as_utc(self.created_at),
        )

    @classmethod
    def from_dto(cls, dto: ExecutionRecord) -> ExecutionRecordModel:
        model = cls(
            id=dto.record_id,
            kind=dto.kind,
            owner_address=dto.owner_address,
            schedule_id=dto.schedule_id,
            tx_hash=dto.tx_hash,
            terms=dto.terms or None,
        )
        if dto.created_at is not None:
            model.created_at = dto.created_at
        return model
