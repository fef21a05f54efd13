"""
FailureClassifier -- decides whether a failed fire is worth another attempt.

Contract:
    ``classify(exc, kind)`` returns ``FailureClass.FATAL`` or
    ``FailureClass.TRANSIENT``.

    1. Typed first.  ``FatalOperationError`` (authorization revoked, bad
       amounts or addresses, insufficient balance, unusable vault data,
       missing price/quote, expired quote) and ``AmbiguousOutcomeError`` are
       always FATAL.
    2. Marker matching only for opaque collaborator errors:
       ``PrecheckRejectedError``, ``ExecutionRejectedError`` and untyped
       exceptions raised out of collaborators.  A case-insensitive
       substring allow-list common to all kinds, plus per-kind extras.
    3. Everything else (timeouts, RPC errors, unmatched rejections,
       persistence and job errors) is TRANSIENT.

Architecture: dca_batch/services.  Pure decision, no I/O.

Invariants enforced:
    - The list is explicit and conservative: a message that matches no
      marker is transient.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from dca_kernel.exceptions import (
    AmbiguousOutcomeError,
    DcaKernelError,
    ExecutionRejectedError,
    FatalOperationError,
    PrecheckRejectedError,
)

from dca_batch.domain.types import FailureClass, OperationKind

COMMON_FATAL_MARKERS: tuple[str, ...] = (
    "insufficient funds",
    "insufficient balance",
    "not enough balance",
    "transfer amount exceeds balance",
    "gas too low",
    "out of gas",
    "intrinsic gas too low",
)


class FailureClassifier:
    """Explicit allow-list classifier for fire failures."""

    def __init__(
        self,
        common_markers: Iterable[str] = COMMON_FATAL_MARKERS,
        kind_markers: Mapping[OperationKind, Iterable[str]] | None = None,
    ):
        self._common = tuple(m.lower() for m in common_markers)
        self._per_kind: dict[OperationKind, tuple[str, ...]] = {
            OperationKind(kind): tuple(m.lower() for m in markers)
            for kind, markers in (kind_markers or {}).items()
        }

    def markers_for(self, kind: OperationKind) -> tuple[str, ...]:
        return self._common + self._per_kind.get(kind, ())

    def classify(self, exc: BaseException, kind: OperationKind) -> FailureClass:
        if isinstance(exc, (FatalOperationError, AmbiguousOutcomeError)):
            return FailureClass.FATAL

        if isinstance(exc, (PrecheckRejectedError, ExecutionRejectedError)):
            text = f"{exc} {_response_error(exc.response)}"
        elif isinstance(exc, DcaKernelError):
            return FailureClass.TRANSIENT
        else:
            text = str(exc)

        if self.matched_marker(text, kind) is not None:
            return FailureClass.FATAL
        return FailureClass.TRANSIENT

    def matched_marker(self, text: str, kind: OperationKind) -> str | None:
        lowered = text.lower()
        for marker in self.markers_for(kind):
            if marker in lowered:
                return marker
        return None


def _response_error(response: Any) -> str:
    if not isinstance(response, dict):
        return ""
    parts = [str(response.get("error") or "")]
    result = response.get("result")
    if isinstance(result, dict) and result.get("error"):
        parts.append(str(result["error"]))
    return " ".join(parts)
