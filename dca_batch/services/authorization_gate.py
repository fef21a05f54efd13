"""
AuthorizationGate -- fire-time re-validation of the user's delegation.

Contract:
    ``resolve(owner, app_id)`` returns the app version the owner currently
    permits, or None.  ``authorize(job, call=None)`` resolves it (through
    ``call`` when given, so the lookup can be bounded) and reconciles it
    with the version the job was created for, returning an
    ``AuthorizationDecision``:

        current is None       -> AuthorizationRevokedError (fatal)
        current == stored     -> pass-through
        current != stored     -> version_policy(stored, current); when the
                                 result differs from stored, the job is
                                 saved once with the new version before the
                                 fire continues.

Architecture: dca_batch/services.  The pure policy lives in
    ``dca_kernel.domain.authorization``; this service adds the lookup and
    the persisted update through the JobStore.

Invariants enforced:
    - Fails closed: no permitted version, no fire.
    - The stored version only moves forward.
"""

from __future__ import annotations

from typing import Any, Callable, Protocol, runtime_checkable

from dca_kernel.domain.authorization import (
    AuthorizationDecision,
    VersionPolicy,
    assert_permitted_version,
)
from dca_kernel.exceptions import AuthorizationRevokedError
from dca_kernel.logging_config import get_logger

from dca_batch.domain.types import ScheduledOperation
from dca_batch.services.job_store import JobStore

logger = get_logger("batch.authorization_gate")


@runtime_checkable
class PermittedVersionStore(Protocol):
    """Backing store of the user's current delegation."""

    def get_current_permitted_version(
        self, owner_address: str, app_id: int,
    ) -> int | None: ...


class AuthorizationGate:
    """Resolves and reconciles the permitted app version for a job."""

    def __init__(
        self,
        permitted_versions: PermittedVersionStore,
        job_store: JobStore,
        version_policy: VersionPolicy = assert_permitted_version,
    ):
        self._permitted_versions = permitted_versions
        self._job_store = job_store
        self._version_policy = version_policy

    def resolve(self, owner_address: str, app_id: int) -> int | None:
        return self._permitted_versions.get_current_permitted_version(
            owner_address, app_id,
        )

    def authorize(
        self,
        job: ScheduledOperation,
        call: Callable[..., Any] | None = None,
    ) -> tuple[ScheduledOperation, AuthorizationDecision]:
        """Resolve the live permitted version and reconcile ``job`` with it.

        ``call(fn, *args, phase=...)`` runs the lookup, so the executor can
        bound it with its timeout; without it the lookup runs inline.
        """
        if call is None:
            permitted = self.resolve(job.owner_address, job.app.app_id)
        else:
            permitted = call(
                self.resolve, job.owner_address, job.app.app_id, phase="authorization",
            )
        return self.reconcile(job, permitted)

    def reconcile(
        self,
        job: ScheduledOperation,
        permitted_version: int | None,
    ) -> tuple[ScheduledOperation, AuthorizationDecision]:
        """Reconcile ``job`` against an already resolved permitted version.

        Returns the job as it must be run (possibly with an advanced
        version) and the decision.

        Raises:
            AuthorizationRevokedError: No permitted version for the owner.
            UnsupportedVersionTransitionError: The policy rejected the move.
        """
        stored = job.app.version
        if permitted_version is None:
            logger.warning(
                "authorization_revoked",
                extra={
                    "job_id": str(job.job_id),
                    "app_id": job.app.app_id,
                    "stored_version": stored,
                },
            )
            raise AuthorizationRevokedError(job.owner_address, job.app.app_id, stored)

        if permitted_version == stored:
            return job, AuthorizationDecision(
                app_id=job.app.app_id,
                version_to_run=stored,
                previous_version=stored,
                permitted_version=permitted_version,
            )

        version_to_run = self._version_policy(stored, permitted_version)
        decision = AuthorizationDecision(
            app_id=job.app.app_id,
            version_to_run=version_to_run,
            previous_version=stored,
            permitted_version=permitted_version,
        )

        if decision.advanced:
            job = job.with_version(version_to_run)
            self._job_store.save(job)
            logger.info(
                "authorization_version_advanced",
                extra={
                    "job_id": str(job.job_id),
                    "app_id": job.app.app_id,
                    "previous_version": stored,
                    "new_version": version_to_run,
                },
            )

        return job, decision
