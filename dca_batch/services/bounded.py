"""
Bounded external calls and the per-job fire guard.

Contract:
    ``BoundedCaller.call(fn, *args, timeout=..., phase=...)`` runs ``fn`` on
    a worker thread and waits at most ``timeout`` seconds for it.  A call
    that does not finish in time raises ``CollaboratorTimeoutError``; the
    caller decides what that timeout means for the fire (transient before
    on-chain submission, ambiguous after).

    ``FireGuard.hold(job_id)`` admits at most one fire per job id in this
    process.  A second concurrent fire for the same id is rejected with
    ``FireAlreadyRunningError``; distinct ids never block each other.

Architecture: dca_batch/services.  Stdlib concurrency only.

Invariants enforced:
    - A timed-out call still running in the background keeps its job held
      (``FireGuard.defer``), so a redelivered fire can never overlap an
      abandoned ability call of the previous one.

Non-goals:
    - A timed-out worker thread cannot be killed; it finishes in the
      background and its result is discarded.  The timeout error carries
      its future as ``pending``.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from contextlib import contextmanager
from typing import Any, Callable, Generator, TypeVar
from uuid import UUID

from dca_kernel.exceptions import CollaboratorTimeoutError, FireAlreadyRunningError
from dca_kernel.logging_config import get_logger

logger = get_logger("batch.bounded")

T = TypeVar("T")


class BoundedCaller:
    """Runs collaborator calls under a caller-supplied timeout."""

    def __init__(
        self,
        default_timeout_seconds: float | None = 30.0,
        max_workers: int = 16,
    ):
        self._default_timeout = default_timeout_seconds
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="dca-call",
        )

    def call(
        self,
        fn: Callable[..., T],
        *args: Any,
        timeout: float | None = None,
        phase: str = "call",
        **kwargs: Any,
    ) -> T:
        """Call ``fn(*args, **kwargs)`` and wait at most ``timeout`` seconds.

        Exceptions raised by ``fn`` propagate unchanged.

        Raises:
            CollaboratorTimeoutError: ``fn`` did not return in time.
        """
        effective = timeout if timeout is not None else self._default_timeout
        if effective is None:
            return fn(*args, **kwargs)

        future = self._pool.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=effective)
        except FuturesTimeoutError:
            future.cancel()
            logger.warning(
                "collaborator_call_timed_out",
                extra={"phase": phase, "timeout_seconds": effective},
            )
            raise CollaboratorTimeoutError(phase, effective, pending=future) from None

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)


class FireGuard:
    """In-process at-most-one-fire-per-job guard.

    A job stays held after its fire returns while any call that fire
    abandoned on timeout is still running (see ``defer``).
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._held: set[UUID] = set()
        self._pending: dict[UUID, set[Future]] = {}

    @contextmanager
    def hold(self, job_id: UUID) -> Generator[None, None, None]:
        """Hold the job for the duration of one fire.

        Raises:
            FireAlreadyRunningError: Another fire of ``job_id`` is in flight,
                or a call abandoned by an earlier fire has not finished.
        """
        with self._lock:
            if job_id in self._held or job_id in self._pending:
                raise FireAlreadyRunningError(str(job_id))
            self._held.add(job_id)
        try:
            yield
        finally:
            with self._lock:
                self._held.discard(job_id)

    def defer(self, job_id: UUID, future: Future) -> None:
        """Keep ``job_id`` held until ``future`` completes."""
        with self._lock:
            self._pending.setdefault(job_id, set()).add(future)
        logger.warning("fire_release_deferred", extra={"job_id": str(job_id)})
        # Runs inline when the future is already done, so outside the lock.
        future.add_done_callback(lambda done: self._settle(job_id, done))

    def _settle(self, job_id: UUID, future: Future) -> None:
        with self._lock:
            pending = self._pending.get(job_id)
            if pending is None:
                return
            pending.discard(future)
            if not pending:
                del self._pending[job_id]

    def is_running(self, job_id: UUID) -> bool:
        with self._lock:
            return job_id in self._held or job_id in self._pending
