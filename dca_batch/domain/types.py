"""
dca_batch.domain.types -- Pure frozen dataclasses for recurring operations.

ZERO I/O.

Frozen dataclasses with str-Enum status fields, following the batch DTO
pattern: the ORM layer converts to and from these with ``to_dto()`` /
``from_dto()``; services only ever hand these around.

Invariants enforced:
    - ``ScheduledOperation.owner_address`` is a validated, lower-cased
      20-byte hex address.
    - ``ScheduledOperation.app.version`` only moves forward (``with_version``
      refuses to lower it).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from dca_kernel.domain.addresses import ZERO_ADDRESS, normalize_address
from dca_kernel.domain.amounts import DEFAULT_DECIMALS
from dca_kernel.domain.authorization import AppReference
from dca_kernel.exceptions import VersionRegressionError


# =============================================================================
# Enums
# =============================================================================


class OperationKind(str, Enum):
    """Recurring operation kinds, one handler each."""

    TRANSFER = "transfer"
    DCA_SWAP = "dca_swap"
    WRITE_OPTION = "write_option"
    SETTLEMENT = "settlement"
    OPTIONS_TRADE = "options_trade"


class FireState(str, Enum):
    """Furthest state a fire reached."""

    LOADED = "loaded"
    AUTHORIZATION_CHECKED = "authorization_checked"
    NORMALIZED = "normalized"
    PRECHECKED = "prechecked"
    EXECUTED = "executed"
    PERSISTED = "persisted"
    FAILED = "failed"


class FireStatus(str, Enum):
    """Outcome of a fire that did not raise."""

    PERSISTED = "persisted"  # Submitted on-chain and recorded
    EXECUTED_UNRECORDED = "executed_unrecorded"  # Submitted, record write failed
    SKIPPED = "skipped"  # Disabled job or conditions not met


class FailureClass(str, Enum):
    FATAL = "fatal"
    TRANSIENT = "transient"


# =============================================================================
# ScheduledOperation
# =============================================================================


@dataclass(frozen=True)
class ScheduledOperation:
    """Immutable snapshot of one recurring job.

    ``parameters`` holds the kind-specific inputs exactly as the user
    submitted them (decimal strings, addresses, epoch seconds).  Scheduling
    metadata is owned by the job store and only read here.
    """

    job_id: UUID
    kind: OperationKind
    owner_address: str
    app: AppReference
    parameters: dict[str, Any] = field(default_factory=dict)
    name: str = ""
    interval: str = "1 day"
    enabled: bool = True
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    last_finished_at: datetime | None = None
    failed_at: datetime | None = None
    fail_reason: str | None = None
    disabled_reason: str | None = None
    locked_at: datetime | None = None
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "owner_address", normalize_address(self.owner_address, "owner_address")
        )
        if not isinstance(self.kind, OperationKind):
            object.__setattr__(self, "kind", OperationKind(self.kind))

    def with_version(self, version: int) -> ScheduledOperation:
        """Copy with the app version moved forward to ``version``.

        Raises:
            VersionRegressionError: If ``version`` is below the stored one.
        """
        if version < self.app.version:
            raise VersionRegressionError(str(self.job_id), self.app.version, version)
        return replace(self, app=AppReference(self.app.app_id, version))

    @property
    def is_paused(self) -> bool:
        return not self.enabled


# =============================================================================
# Auxiliary read results
# =============================================================================


@dataclass(frozen=True)
class VaultTokenInfo:
    """Per-vault token view, fetched fresh per fire and never persisted."""

    deposit_token: str
    conversion_token: str
    premium_token: str
    deposit_decimals: int
    conversion_decimals: int
    premium_decimals: int
    strike: int | None = None
    expiry: int | None = None
    is_fallback: bool = False


def fallback_vault_token_info() -> VaultTokenInfo:
    """Conservative default used when the vault lookup fails."""
    return VaultTokenInfo(
        deposit_token=ZERO_ADDRESS,
        conversion_token=ZERO_ADDRESS,
        premium_token=ZERO_ADDRESS,
        deposit_decimals=DEFAULT_DECIMALS,
        conversion_decimals=DEFAULT_DECIMALS,
        premium_decimals=DEFAULT_DECIMALS,
        is_fallback=True,
    )


@dataclass(frozen=True)
class PremiumQuote:
    """Signed premium bid for writing an option on a vault at an expiry."""

    premium_per_unit: Decimal
    signature: str
    timestamp: int
    vault_address: str | None = None
    expiry: int | None = None


# =============================================================================
# Fire result
# =============================================================================


@dataclass(frozen=True)
class FireResult:
    """Immutable result of one non-raising fire.

    Returned by ``OperationExecutor.fire()``.  Raising fires surface through
    the exception instead (transient: original error; fatal:
    ``OperationDisabledError``).
    """

    job_id: UUID
    kind: OperationKind
    status: FireStatus
    state: FireState
    tx_hash: str | None = None
    record_id: UUID | None = None
    version_run: int | None = None
    version_advanced: bool = False
    skip_reason: str | None = None
    persistence_error: str | None = None
    duration_ms: int = 0
