"""
Typed exception hierarchy for the recurring operation executor.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A recurring job fires again and again until something disables it.  Deciding
whether a failure is worth another attempt must not depend on message wording:

    try:
        executor.fire(job_id)
    except Exception as e:
        if "insufficient" in str(e):  # FRAGILE
            disable()

Instead, every non-retryable condition the core can detect itself is raised
as a ``FatalOperationError`` subclass and caught by type:

    try:
        executor.fire(job_id)
    except OperationDisabledError as e:
        notify_user(e.job_id, e.reason)

Message-marker matching is reserved for errors coming out of opaque external
collaborators (the ability runner, RPC nodes) whose taxonomy cannot be
changed.  See ``dca_batch.services.classifier``.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    DcaKernelError (base)
    |
    +-- FatalOperationError                 (never retried automatically)
    |   +-- AuthorizationRevokedError
    |   +-- UnsupportedVersionTransitionError
    |   +-- InsufficientBalanceError
    |   +-- InvalidVaultConfigurationError
    |   |   +-- VaultInfoUnavailableError
    |   +-- AuxiliaryDataUnavailableError
    |   +-- QuoteExpiredError
    |   +-- ValidationError
    |       +-- InvalidAmountError
    |       +-- InvalidAddressError
    |
    +-- CollaboratorError                   (transient unless marker-matched)
    |   +-- PrecheckRejectedError
    |   +-- ExecutionRejectedError
    |   +-- CollaboratorTimeoutError
    |
    +-- AmbiguousOutcomeError               (submitted, outcome unknown)
    |
    +-- PersistenceError
    |   +-- DuplicateExecutionRecordError
    |   +-- PersistenceFailureError
    |
    +-- JobError
        +-- ScheduledOperationNotFoundError
        +-- FireAlreadyRunningError
        +-- OperationDisabledError          (terminal: job was disabled)
        +-- OperationNotRegisteredError
        +-- VersionRegressionError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                            | When Raised
--------------|---------------------------------|-----------------------------------
Fatal         | AUTHORIZATION_REVOKED           | No permitted app version for owner
              | UNSUPPORTED_VERSION_TRANSITION  | Permitted version moved backwards
              | INSUFFICIENT_BALANCE            | Owner balance below requested amount
              | INVALID_VAULT_CONFIGURATION     | Vault data unusable for normalization
              | VAULT_INFO_UNAVAILABLE          | Vault lookup failed, fallback disabled
              | AUXILIARY_DATA_UNAVAILABLE      | Price / quote lookup without fallback
              | QUOTE_EXPIRED                   | Signed quote validity has passed
              | INVALID_AMOUNT                  | Decimal quantity cannot be normalized
              | INVALID_ADDRESS                 | Not a 20-byte hex address
--------------|---------------------------------|-----------------------------------
Collaborator  | PRECHECK_REJECTED               | Ability precheck returned success=false
              | EXECUTION_REJECTED              | Ability execute returned success=false
              | COLLABORATOR_TIMEOUT            | External call exceeded its timeout
--------------|---------------------------------|-----------------------------------
Outcome       | AMBIGUOUS_OUTCOME               | Timeout after on-chain submission
--------------|---------------------------------|-----------------------------------
Persistence   | DUPLICATE_EXECUTION_RECORD      | tx_hash already recorded
              | PERSISTENCE_FAILURE             | Record write failed after submission
--------------|---------------------------------|-----------------------------------
Job           | SCHEDULED_OPERATION_NOT_FOUND   | Unknown job id
              | FIRE_ALREADY_RUNNING            | Concurrent fire for the same job id
              | OPERATION_DISABLED              | Job disabled after a fatal failure
              | OPERATION_NOT_REGISTERED        | No handler for the operation kind
              | VERSION_REGRESSION              | Attempt to lower the stored version

===============================================================================
"""

from __future__ import annotations

from typing import Any


class DcaKernelError(Exception):
    """
    Base exception for all executor errors.

    Every subclass carries a ``code`` class attribute.  ``context`` holds
    diagnostic fields attached at the fire boundary (job id, operation kind,
    state reached, normalized params, collaborator response).
    """

    code: str = "DCA_KERNEL_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.context: dict[str, Any] = {}

    def with_context(self, **fields: Any) -> "DcaKernelError":
        """Attach diagnostic fields without overwriting ones already set."""
        for key, value in fields.items():
            self.context.setdefault(key, value)
        return self


# =============================================================================
# Fatal conditions
# =============================================================================


class FatalOperationError(DcaKernelError):
    """Condition that only the user can fix; the job must be disabled."""

    code: str = "FATAL_OPERATION_ERROR"


class AuthorizationRevokedError(FatalOperationError):
    """The owner no longer permits any version of the app."""

    code: str = "AUTHORIZATION_REVOKED"

    def __init__(self, owner_address: str, app_id: int, stored_version: int):
        self.owner_address = owner_address
        self.app_id = app_id
        self.stored_version = stored_version
        super().__init__(
            f"Authorization revoked: user {owner_address} no longer permits app "
            f"{app_id} (job created with version {stored_version})"
        )


class UnsupportedVersionTransitionError(FatalOperationError):
    """The permitted version moved in a direction the policy rejects."""

    code: str = "UNSUPPORTED_VERSION_TRANSITION"

    def __init__(self, stored_version: int, permitted_version: int):
        self.stored_version = stored_version
        self.permitted_version = permitted_version
        super().__init__(
            f"Permitted app version {permitted_version} cannot replace "
            f"stored version {stored_version}"
        )


class InsufficientBalanceError(FatalOperationError):
    """Owner balance is below the amount the operation needs."""

    code: str = "INSUFFICIENT_BALANCE"

    def __init__(
        self,
        owner_address: str,
        token_address: str,
        balance_raw: int,
        required_raw: int,
        decimals: int,
    ):
        self.owner_address = owner_address
        self.token_address = token_address
        self.balance_raw = balance_raw
        self.required_raw = required_raw
        self.decimals = decimals
        super().__init__(
            f"Insufficient balance for {owner_address} on token {token_address}: "
            f"have {balance_raw}, need {required_raw} (decimals={decimals})"
        )


class InvalidVaultConfigurationError(FatalOperationError):
    """Vault or token configuration cannot be used for normalization."""

    code: str = "INVALID_VAULT_CONFIGURATION"

    def __init__(self, vault_address: str, reason: str):
        self.vault_address = vault_address
        self.reason = reason
        super().__init__(f"Invalid vault configuration for {vault_address}: {reason}")


class VaultInfoUnavailableError(InvalidVaultConfigurationError):
    """Vault token info lookup failed and the fallback is disabled."""

    code: str = "VAULT_INFO_UNAVAILABLE"


class AuxiliaryDataUnavailableError(FatalOperationError):
    """An auxiliary lookup with no documented fallback failed."""

    code: str = "AUXILIARY_DATA_UNAVAILABLE"

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Failed to fetch {source}: {reason}")


class QuoteExpiredError(FatalOperationError):
    """A signed quote stored on the job can never be valid again."""

    code: str = "QUOTE_EXPIRED"

    def __init__(self, quote_id: str, valid_until: int, now_ts: int):
        self.quote_id = quote_id
        self.valid_until = valid_until
        self.now_ts = now_ts
        super().__init__(
            f"Quote {quote_id} expired at {valid_until} (now {now_ts})"
        )


class ValidationError(FatalOperationError):
    """Persisted job input that can never be executed as-is."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(ValidationError):
    """Decimal quantity cannot be normalized at the requested precision."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, value: Any, decimals: Any, reason: str):
        self.value = value
        self.decimals = decimals
        self.reason = reason
        super().__init__(f"Invalid amount {value!r} at {decimals} decimals: {reason}")


class InvalidAddressError(ValidationError):
    """Value is not a 20-byte hex chain address."""

    code: str = "INVALID_ADDRESS"

    def __init__(self, value: Any, field_name: str | None = None):
        self.value = value
        self.field_name = field_name
        label = f" for {field_name}" if field_name else ""
        super().__init__(f"Invalid address{label}: {value!r}")


# =============================================================================
# Collaborator failures
# =============================================================================


class CollaboratorError(DcaKernelError):
    """Failure reported by an external collaborator."""

    code: str = "COLLABORATOR_ERROR"


class _AbilityRejection(CollaboratorError):
    phase: str = ""

    def __init__(
        self,
        ability: str,
        response: dict[str, Any],
        params: dict[str, Any],
        delegator_address: str,
    ):
        self.ability = ability
        self.response = response
        self.params = params
        self.delegator_address = delegator_address
        error = response.get("error") if isinstance(response, dict) else None
        super().__init__(
            f"{ability} {self.phase} failed: {error or 'no error message'}"
        )


class PrecheckRejectedError(_AbilityRejection):
    """Ability precheck returned ``success=False``."""

    code: str = "PRECHECK_REJECTED"
    phase = "precheck"


class ExecutionRejectedError(_AbilityRejection):
    """Ability execute returned ``success=False`` or no transaction hash."""

    code: str = "EXECUTION_REJECTED"
    phase = "execute"


class CollaboratorTimeoutError(CollaboratorError):
    """An external call did not return within its caller-supplied timeout."""

    code: str = "COLLABORATOR_TIMEOUT"

    def __init__(self, phase: str, timeout_seconds: float, pending: Any = None):
        self.phase = phase
        self.timeout_seconds = timeout_seconds
        # The abandoned call, still running on its worker thread (a Future).
        self.pending = pending
        super().__init__(f"{phase} timed out after {timeout_seconds}s")


# =============================================================================
# Outcome / persistence
# =============================================================================


class AmbiguousOutcomeError(DcaKernelError):
    """
    The on-chain submission was acknowledged but a later step timed out.

    Never retried with the same parameters; requires manual reconciliation.
    """

    code: str = "AMBIGUOUS_OUTCOME"

    def __init__(self, job_id: str, tx_hash: str, phase: str):
        self.job_id = job_id
        self.tx_hash = tx_hash
        self.phase = phase
        super().__init__(
            f"Ambiguous outcome for job {job_id}: transaction {tx_hash} was "
            f"submitted but {phase} did not complete; manual reconciliation required"
        )


class PersistenceError(DcaKernelError):
    """Base for execution-record persistence failures."""

    code: str = "PERSISTENCE_ERROR"


class DuplicateExecutionRecordError(PersistenceError):
    """An execution record with this transaction hash already exists."""

    code: str = "DUPLICATE_EXECUTION_RECORD"

    def __init__(self, tx_hash: str):
        self.tx_hash = tx_hash
        super().__init__(f"Execution record already exists for tx {tx_hash}")


class PersistenceFailureError(PersistenceError):
    """The record write failed after a successful on-chain submission."""

    code: str = "PERSISTENCE_FAILURE"

    def __init__(self, tx_hash: str, reason: str):
        self.tx_hash = tx_hash
        self.reason = reason
        super().__init__(f"Failed to persist record for tx {tx_hash}: {reason}")


# =============================================================================
# Job lifecycle
# =============================================================================


class JobError(DcaKernelError):
    """Base for scheduled-operation lifecycle errors."""

    code: str = "JOB_ERROR"


class ScheduledOperationNotFoundError(JobError):
    """No scheduled operation with the given id."""

    code: str = "SCHEDULED_OPERATION_NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Scheduled operation not found: {job_id}")


class FireAlreadyRunningError(JobError):
    """A fire for this job is still in flight."""

    code: str = "FIRE_ALREADY_RUNNING"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Scheduled operation {job_id} is already running")


class OperationDisabledError(JobError):
    """
    Terminal failure: the job was disabled and will not fire again
    until the user re-enables it.
    """

    code: str = "OPERATION_DISABLED"

    def __init__(self, job_id: str, kind: str, reason: str):
        self.job_id = job_id
        self.kind = kind
        self.reason = reason
        super().__init__(f"{kind} schedule {job_id} disabled due to fatal error: {reason}")


class OperationNotRegisteredError(JobError):
    """No handler registered for the operation kind."""

    code: str = "OPERATION_NOT_REGISTERED"

    def __init__(self, kind: str, available: tuple[str, ...]):
        self.kind = kind
        self.available = available
        super().__init__(
            f"No handler registered for operation kind '{kind}'. "
            f"Available: {list(available)}"
        )


class VersionRegressionError(JobError):
    """Attempt to persist a lower authorization version than stored."""

    code: str = "VERSION_REGRESSION"

    def __init__(self, job_id: str, stored_version: int, new_version: int):
        self.job_id = job_id
        self.stored_version = stored_version
        self.new_version = new_version
        super().__init__(
            f"Refusing to lower app version of {job_id} "
            f"from {stored_version} to {new_version}"
        )
