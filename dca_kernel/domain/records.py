"""
ExecutionRecord DTO -- one per successful on-chain submission.

Invariants enforced:
    - ``tx_hash`` is unique across all records (enforced by the store).
    - ``terms`` carries both human and normalized amounts as strings so the
      record survives JSON round-trips without precision loss.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4


@dataclass(frozen=True)
class ExecutionRecord:
    kind: str
    owner_address: str
    schedule_id: UUID
    tx_hash: str
    terms: dict[str, Any] = field(default_factory=dict)
    record_id: UUID = field(default_factory=uuid4)
    created_at: datetime | None = None
