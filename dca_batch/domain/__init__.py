"""
dca_batch.domain -- Pure types and schedule evaluation for recurring operations.

ZERO I/O.  All types are frozen dataclasses.
"""

from dca_batch.domain.types import (
    FailureClass,
    FireResult,
    FireState,
    FireStatus,
    OperationKind,
    PremiumQuote,
    ScheduledOperation,
    VaultTokenInfo,
    fallback_vault_token_info,
)

__all__ = [
    "FailureClass",
    "FireResult",
    "FireState",
    "FireStatus",
    "OperationKind",
    "PremiumQuote",
    "ScheduledOperation",
    "VaultTokenInfo",
    "fallback_vault_token_info",
]
