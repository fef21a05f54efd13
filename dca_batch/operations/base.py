"""
OperationHandler protocol, supporting types, and OperationRegistry.

Contract:
    ``OperationHandler`` turns one authorized ``ScheduledOperation`` into a
    ``PreparedOperation``: the auxiliary reads and amount normalization for
    its kind, the ordered ability steps to run, and the economic terms to
    record.  Handlers never call ``precheck`` / ``execute`` themselves; the
    executor owns the two-phase protocol and the state machine.

    ``OperationRegistry`` stores one handler per ``OperationKind``.

Architecture:
    dca_batch/operations.  Imports from dca_batch.domain, dca_batch.abilities,
    dca_batch.readers and kernel domain / exceptions only.

Invariants enforced:
    - No on-chain-affecting call happens in ``prepare()``.
    - Every auxiliary read goes through ``FireContext.read`` so it is
      bounded by the caller-supplied timeout.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Protocol, runtime_checkable

from dca_kernel.domain.addresses import normalize_address
from dca_kernel.domain.amounts import DEFAULT_DECIMALS
from dca_kernel.exceptions import (
    AuxiliaryDataUnavailableError,
    CollaboratorTimeoutError,
    InsufficientBalanceError,
    OperationNotRegisteredError,
    ValidationError,
)
from dca_kernel.logging_config import get_logger

from dca_batch.abilities import AbilityClient
from dca_batch.domain.types import OperationKind, ScheduledOperation
from dca_batch.readers import TokenReader

logger = get_logger("batch.operations")


# =============================================================================
# Supporting DTOs
# =============================================================================


@dataclass(frozen=True)
class AbilityStep:
    """One precheck/execute pair against one ability.

    ``tx_hash_key`` names the result field holding the transaction hash;
    ``record_as`` is the terms key the hash is stored under when this is not
    the final step (for example an approval ahead of the main call).
    """

    client: AbilityClient
    params: dict[str, Any]
    tx_hash_key: str | None = None
    record_as: str | None = None

    @property
    def ability(self) -> str:
        return self.client.ability


@dataclass(frozen=True)
class PreparedOperation:
    """Result of ``OperationHandler.prepare()``.

    Either ``steps`` is non-empty, or ``skip_reason`` is set and the fire
    ends without touching the chain.
    """

    steps: tuple[AbilityStep, ...] = ()
    terms: dict[str, Any] = field(default_factory=dict)
    skip_reason: str | None = None

    @classmethod
    def skip(cls, reason: str, **terms: Any) -> PreparedOperation:
        return cls(steps=(), terms=dict(terms), skip_reason=reason)

    @property
    def is_skip(self) -> bool:
        return self.skip_reason is not None


@dataclass(frozen=True)
class FireContext:
    """What a handler may use during ``prepare()``.

    ``read(phase, fn, *args)`` runs an auxiliary read under the fire's
    timeout.  ``now`` comes from the injected Clock.
    """

    job: ScheduledOperation
    now: datetime
    reader_call: Callable[..., Any]

    @property
    def now_ts(self) -> int:
        return int(self.now.timestamp())

    @property
    def owner_address(self) -> str:
        return self.job.owner_address

    @property
    def params(self) -> dict[str, Any]:
        return self.job.parameters

    def read(self, phase: str, fn: Callable[..., Any], *args: Any) -> Any:
        return self.reader_call(fn, *args, phase=phase)


# =============================================================================
# Shared lookups
# =============================================================================


def required_param(ctx: FireContext, name: str) -> Any:
    value = ctx.params.get(name)
    if value is None or value == "":
        raise ValidationError(f"Missing parameter '{name}'")
    return value


def param_address(ctx: FireContext, name: str) -> str:
    return normalize_address(ctx.params.get(name), name)


def param_int(ctx: FireContext, name: str, default: int | None = None) -> int:
    """Integer parameter (timestamps, basis points).

    Missing with no ``default``, or not an integer, is a ValidationError.
    """
    if default is not None and ctx.params.get(name) in (None, ""):
        return default
    value = required_param(ctx, name)
    if isinstance(value, bool):
        raise ValidationError(f"Parameter '{name}' must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            f"Parameter '{name}' must be an integer, got {value!r}"
        ) from exc


def read_token_decimals(
    ctx: FireContext, tokens: TokenReader, token_address: str,
) -> int:
    """Token decimals, falling back to 18 when the lookup fails."""
    try:
        return int(ctx.read("token_decimals", tokens.decimals, token_address))
    except Exception as exc:
        logger.warning(
            "token_decimals_fallback",
            extra={
                "token_address": token_address,
                "fallback_decimals": DEFAULT_DECIMALS,
                "error": str(exc),
            },
        )
        return DEFAULT_DECIMALS


def require_balance(
    ctx: FireContext,
    tokens: TokenReader,
    token_address: str,
    required_raw: int,
    decimals: int,
) -> int:
    """Owner balance of ``token_address``; fatal if below ``required_raw``.

    A failed balance read has no fallback and propagates as transient.
    """
    balance = int(
        ctx.read("token_balance", tokens.balance_of, token_address, ctx.owner_address)
    )
    if balance < required_raw:
        raise InsufficientBalanceError(
            ctx.owner_address, token_address, balance, required_raw, decimals,
        )
    return balance


def fetch_required(ctx: FireContext, source: str, fn: Callable[..., Any], *args: Any) -> Any:
    """Auxiliary read with no fallback.

    Timeouts stay transient; any other failure is fatal.
    """
    try:
        return ctx.read(source, fn, *args)
    except CollaboratorTimeoutError:
        raise
    except Exception as exc:
        raise AuxiliaryDataUnavailableError(source, str(exc)) from exc


# =============================================================================
# OperationHandler Protocol
# =============================================================================


@runtime_checkable
class OperationHandler(Protocol):
    """Per-kind preparation of one fire."""

    @property
    def kind(self) -> OperationKind: ...

    def prepare(self, ctx: FireContext) -> PreparedOperation: ...


# =============================================================================
# OperationRegistry
# =============================================================================


class OperationRegistry:
    """Registry mapping operation kinds to handlers.

    Contract:
        - ``register()`` adds a handler; raises ValueError on duplicate.
        - ``get()`` retrieves by kind; raises OperationNotRegisteredError.
        - ``list_kinds()`` returns all registered kinds.
    """

    def __init__(self) -> None:
        self._handlers: dict[OperationKind, OperationHandler] = {}

    def register(self, handler: OperationHandler) -> None:
        if handler.kind in self._handlers:
            raise ValueError(f"Operation kind '{handler.kind.value}' is already registered")
        self._handlers[handler.kind] = handler

    def get(self, kind: OperationKind) -> OperationHandler:
        try:
            return self._handlers[kind]
        except KeyError:
            raise OperationNotRegisteredError(
                getattr(kind, "value", str(kind)),
                tuple(k.value for k in self.list_kinds()),
            ) from None

    def list_kinds(self) -> tuple[OperationKind, ...]:
        return tuple(sorted(self._handlers, key=lambda k: k.value))

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, kind: OperationKind) -> bool:
        return kind in self._handlers
