"""
OperationScheduler -- In-process polling scheduler for recurring operations.

Contract:
    Polls due jobs on a configurable interval, evaluates ``should_fire()``
    (pure), claims each due job with the store's fire lock and runs it
    through ``OperationExecutor`` on a bounded worker pool.

Architecture: dca_batch/services.  Uses dca_batch.domain.schedule for pure
    evaluation, the job store for claims and bookkeeping, and
    dca_batch.services.executor for the fire itself.

Invariants enforced:
    - All timestamps from the injected Clock.
    - Schedule evaluation is pure (should_fire).
    - A job is fired only while this scheduler holds its lock, and the
      lock is released whatever the fire's outcome.
    - A job whose interval cannot be parsed is disabled, never left
      locked or silently retried.
    - Distinct jobs fire in parallel; one job never fires twice at once.
    - Graceful shutdown (respects stop signal, completes in-flight fires).
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime

from dca_kernel.domain.clock import Clock, SystemClock
from dca_kernel.exceptions import FireAlreadyRunningError, OperationDisabledError
from dca_kernel.logging_config import get_logger

from dca_batch.domain.schedule import compute_next_run, should_fire
from dca_batch.domain.types import FireResult, ScheduledOperation
from dca_batch.services.executor import OperationExecutor
from dca_batch.services.job_store import JobStore

logger = get_logger("batch.scheduler")


class OperationScheduler:
    """In-process polling scheduler for recurring operations.

    Contract:
        - ``tick()`` evaluates due jobs and fires them, waiting for the
          fires it started.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler; cross-process exclusion relies on
          the store's lock column only.
        - Does NOT retry failed fires; the next due time is the retry.
    """

    def __init__(
        self,
        job_store: JobStore,
        executor: OperationExecutor,
        clock: Clock | None = None,
        tick_interval_seconds: float = 60,
        max_parallel_fires: int = 4,
        batch_limit: int | None = None,
        lock_lifetime_seconds: int | None = None,
    ):
        self._job_store = job_store
        self._executor = executor
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._batch_limit = batch_limit
        self._lock_lifetime = (
            lock_lifetime_seconds
            if lock_lifetime_seconds is not None
            else getattr(job_store, "lock_lifetime_seconds", None)
        )
        self._pool = ThreadPoolExecutor(
            max_workers=max_parallel_fires, thread_name_prefix="dca-fire",
        )
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> int:
        """Evaluate and fire due jobs (public for testing).

        Returns the number of jobs that were fired.
        """
        now = self._clock.now()
        try:
            due = self._job_store.list_due(now, limit=self._batch_limit)
        except Exception:
            logger.exception("scheduler_tick_failed")
            return 0

        futures = []
        for job in due:
            if self._stop_event.is_set():
                break
            if not should_fire(job, now, self._lock_lifetime):
                continue
            if not self._job_store.try_lock(job.job_id):
                continue
            futures.append(self._pool.submit(self._fire_one, job, now))

        wait(futures)
        for future in futures:
            error = future.exception()
            if error is not None:
                logger.error("scheduler_fire_crashed", exc_info=error)
        fired = len(futures)
        if fired:
            logger.info("scheduler_tick_completed", extra={"fired": fired})
        return fired

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="dca-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the scheduler to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    def shutdown(self, timeout: float = 30.0) -> None:
        """Stop the loop and release the fire pool."""
        self.stop(timeout=timeout)
        self._pool.shutdown(wait=True)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        """Background polling loop. Exits when stop_event is set."""
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)

    def _fire_one(self, job: ScheduledOperation, started_at: datetime) -> FireResult | None:
        """Fire one claimed job and book the outcome.  Always releases the lock."""
        try:
            try:
                next_run = compute_next_run(job.interval, started_at)
            except ValueError as exc:
                self._disable_unschedulable(job, exc)
                return None
            return self._fire_and_record(job, started_at, next_run)
        finally:
            self._job_store.unlock(job.job_id)

    def _disable_unschedulable(self, job: ScheduledOperation, exc: ValueError) -> None:
        # Rows written before interval validation, or by another writer.
        reason = f"Invalid interval: {exc}"
        logger.error(
            "operation_interval_invalid",
            extra={"job_id": str(job.job_id), "interval": job.interval, "error": str(exc)},
        )
        self._job_store.disable(job.job_id, reason)
        self._job_store.record_failure(job.job_id, reason, None)

    def _fire_and_record(
        self,
        job: ScheduledOperation,
        started_at: datetime,
        next_run: datetime | None,
    ) -> FireResult | None:
        try:
            result = self._executor.fire(job.job_id)
        except FireAlreadyRunningError:
            logger.info("fire_already_running", extra={"job_id": str(job.job_id)})
            return None
        except OperationDisabledError as exc:
            self._job_store.record_failure(job.job_id, str(exc), next_run)
            return None
        except Exception as exc:
            logger.exception(
                "operation_fire_failed",
                extra={"job_id": str(job.job_id), "kind": job.kind.value},
            )
            self._job_store.record_failure(job.job_id, str(exc), next_run)
            return None

        self._job_store.record_run(job.job_id, started_at, next_run)
        logger.info(
            "operation_fired",
            extra={
                "job_id": str(job.job_id),
                "kind": job.kind.value,
                "status": result.status.value,
                "tx_hash": result.tx_hash,
                "next_run_at": str(next_run) if next_run else None,
            },
        )
        return result
