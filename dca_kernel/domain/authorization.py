"""
Authorization version reconciliation -- pure policy functions.

Contract:
    ``assert_permitted_version(stored, current)`` decides which app version a
    job runs with when the user's live permitted version differs from the one
    recorded at job creation.  Forward moves are adopted; backwards moves are
    rejected so the stored version never regresses.

Architecture: dca_kernel/domain.  ZERO I/O.  The gate that resolves the live
    version and persists the update lives in
    ``dca_batch.services.authorization_gate``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from dca_kernel.exceptions import UnsupportedVersionTransitionError

VersionPolicy = Callable[[int, int], int]


@dataclass(frozen=True)
class AppReference:
    """The delegated app a job runs under, with the version it was created for."""

    app_id: int
    version: int


@dataclass(frozen=True)
class AuthorizationDecision:
    """Outcome of a fire-time authorization check.

    ``advanced`` is True when the job's stored version was moved forward to
    the user's currently permitted version during this check.
    """

    app_id: int
    version_to_run: int
    previous_version: int
    permitted_version: int

    @property
    def advanced(self) -> bool:
        return self.version_to_run != self.previous_version


def assert_permitted_version(stored_version: int, permitted_version: int) -> int:
    """Return the version to run.

    Raises:
        UnsupportedVersionTransitionError: If the permitted version is
            lower than the stored one.
    """
    if permitted_version < stored_version:
        raise UnsupportedVersionTransitionError(stored_version, permitted_version)
    return permitted_version
