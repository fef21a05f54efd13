"""
OperationExecutor -- runs one fire of one recurring operation.

Contract:
    ``fire(job_id)`` drives a job through

        LOADED -> AUTHORIZATION_CHECKED -> NORMALIZED -> PRECHECKED
               -> EXECUTED -> PERSISTED

    and returns a ``FireResult``, or raises.  A transient failure re-raises
    the original error with diagnostic context attached; a fatal failure
    disables the job and raises ``OperationDisabledError`` from the cause.

Architecture: dca_batch/services.  Imports from dca_batch.domain,
    dca_batch.operations, dca_batch.abilities, the job store, the gate,
    the classifier and the kernel record store.

Invariants enforced:
    - At most one fire per job id at a time in this process (FireGuard),
      counting calls a timed-out fire left running in the background.
    - Side effects are strictly ordered: no ability call before the gate
      and normalization succeed; no record before execute succeeds.
    - execute() is never attempted after a failed precheck, and neither
      call is retried here.
    - Every external call is bounded by a caller-supplied timeout.  A
      timeout before EXECUTED is transient; during persistence it is an
      ambiguous outcome and the job is disabled.
    - A persistence failure never resubmits: the fire reports the chain
      operation as done and the failure separately.
    - The classifier runs exactly once per failed fire.
    - The executor never enables a job.
"""

from __future__ import annotations

import time
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, Callable
from uuid import UUID, uuid4

from dca_kernel.domain.clock import Clock, SystemClock
from dca_kernel.domain.records import ExecutionRecord
from dca_kernel.exceptions import (
    AmbiguousOutcomeError,
    CollaboratorTimeoutError,
    DcaKernelError,
    ExecutionRejectedError,
    OperationDisabledError,
    PrecheckRejectedError,
)
from dca_kernel.logging_config import LogContext, get_logger
from dca_kernel.services.execution_records import ExecutionRecordStore

from dca_batch.abilities import AbilityContext, AbilityResult
from dca_batch.domain.types import (
    FailureClass,
    FireResult,
    FireState,
    FireStatus,
    ScheduledOperation,
)
from dca_batch.operations.base import (
    AbilityStep,
    FireContext,
    OperationRegistry,
    PreparedOperation,
)
from dca_batch.services.authorization_gate import AuthorizationGate
from dca_batch.services.bounded import BoundedCaller, FireGuard
from dca_batch.services.classifier import FailureClassifier
from dca_batch.services.job_store import JobStore

logger = get_logger("batch.executor")

_firing_job: ContextVar[UUID | None] = ContextVar("firing_job", default=None)


@dataclass
class _FireTrace:
    """Mutable progress of one fire, attached to errors as context."""

    state: FireState = FireState.LOADED
    ability: str | None = None
    params: dict[str, Any] | None = None
    response: dict[str, Any] | None = None
    tx_hash: str | None = None


class OperationExecutor:
    """Per-fire orchestrator for every operation kind.

    Contract:
        - ``fire()`` runs one fire to a terminal state.

    Non-goals:
        - Does NOT decide when to fire -- that is the scheduler's job.
        - Does NOT retry -- the next scheduled fire is the retry.
    """

    def __init__(
        self,
        job_store: JobStore,
        gate: AuthorizationGate,
        registry: OperationRegistry,
        record_store: ExecutionRecordStore,
        classifier: FailureClassifier | None = None,
        clock: Clock | None = None,
        caller: BoundedCaller | None = None,
        guard: FireGuard | None = None,
        call_timeout_seconds: float | None = 30.0,
        persistence_timeout_seconds: float | None = 10.0,
    ):
        self._job_store = job_store
        self._gate = gate
        self._registry = registry
        self._records = record_store
        self._classifier = classifier or FailureClassifier()
        self._clock = clock or SystemClock()
        self._caller = caller or BoundedCaller(default_timeout_seconds=call_timeout_seconds)
        self._guard = guard or FireGuard()
        self._call_timeout = call_timeout_seconds
        self._persistence_timeout = persistence_timeout_seconds

    @property
    def guard(self) -> FireGuard:
        return self._guard

    # -------------------------------------------------------------------------
    # Fire
    # -------------------------------------------------------------------------

    def fire(self, job_id: UUID) -> FireResult:
        """Run one fire of ``job_id``.

        Raises:
            FireAlreadyRunningError: A fire of this job is still in flight.
            ScheduledOperationNotFoundError: The job does not exist.
            OperationDisabledError: Fatal failure; the job is now disabled.
            Exception: Transient failure; the original error, re-raised.
        """
        with self._guard.hold(job_id):
            token = _firing_job.set(job_id)
            try:
                job = self._job_store.load(job_id)
                with LogContext.bind(
                    fire_id=str(uuid4()),
                    job_id=str(job.job_id),
                    operation_kind=job.kind.value,
                    owner_address=job.owner_address,
                ):
                    return self._fire_loaded(job)
            finally:
                _firing_job.reset(token)

    def _fire_loaded(self, job: ScheduledOperation) -> FireResult:
        start = time.monotonic()

        if not job.enabled:
            logger.info(
                "fire_skipped_disabled",
                extra={"disabled_reason": job.disabled_reason},
            )
            return FireResult(
                job_id=job.job_id,
                kind=job.kind,
                status=FireStatus.SKIPPED,
                state=FireState.LOADED,
                skip_reason="disabled",
            )

        logger.info(
            "fire_started",
            extra={"app_id": job.app.app_id, "app_version": job.app.version},
        )
        trace = _FireTrace()
        try:
            return self._run(job, trace, start)
        except Exception as exc:
            if isinstance(exc, DcaKernelError):
                exc.with_context(
                    job_id=str(job.job_id),
                    kind=job.kind.value,
                    state=trace.state.value,
                    ability=trace.ability,
                    params=trace.params,
                    response=trace.response,
                    tx_hash=trace.tx_hash,
                )
            failure = self._classifier.classify(exc, job.kind)
            if failure == FailureClass.TRANSIENT:
                logger.warning(
                    "fire_failed_transient",
                    extra={
                        "state": trace.state.value,
                        "ability": trace.ability,
                        "error": str(exc),
                    },
                )
                raise
            raise self._disable(job, trace, exc) from exc

    def _run(
        self, job: ScheduledOperation, trace: _FireTrace, start: float,
    ) -> FireResult:
        # Authorization
        job, decision = self._gate.authorize(job, call=self._call)
        trace.state = FireState.AUTHORIZATION_CHECKED

        # Normalization and auxiliary reads
        handler = self._registry.get(job.kind)
        prepared = handler.prepare(
            FireContext(job=job, now=self._clock.now(), reader_call=self._call)
        )
        if prepared.is_skip:
            logger.info(
                "fire_skipped_conditions",
                extra={"skip_reason": prepared.skip_reason, "terms": prepared.terms},
            )
            return FireResult(
                job_id=job.job_id,
                kind=job.kind,
                status=FireStatus.SKIPPED,
                state=FireState.NORMALIZED,
                version_run=decision.version_to_run,
                version_advanced=decision.advanced,
                skip_reason=prepared.skip_reason,
                duration_ms=_elapsed_ms(start),
            )
        if not prepared.steps:
            raise ValueError(f"Handler for {job.kind.value} prepared no steps")
        trace.state = FireState.NORMALIZED

        # Precheck / execute
        tx_hash, terms = self._run_steps(job, prepared, trace)

        # Persistence
        record = ExecutionRecord(
            kind=job.kind.value,
            owner_address=job.owner_address,
            schedule_id=job.job_id,
            tx_hash=tx_hash,
            terms={**terms, "app_version": decision.version_to_run},
        )
        try:
            stored = self._call(
                self._records.insert, record,
                timeout=self._persistence_timeout,
                phase="persistence",
            )
        except CollaboratorTimeoutError as exc:
            raise AmbiguousOutcomeError(str(job.job_id), tx_hash, "persistence") from exc
        except Exception as exc:
            # The chain operation already happened: report it, never resubmit.
            logger.error(
                "execution_record_persist_failed",
                extra={"tx_hash": tx_hash, "error": str(exc)},
                exc_info=True,
            )
            return FireResult(
                job_id=job.job_id,
                kind=job.kind,
                status=FireStatus.EXECUTED_UNRECORDED,
                state=FireState.EXECUTED,
                tx_hash=tx_hash,
                version_run=decision.version_to_run,
                version_advanced=decision.advanced,
                persistence_error=str(exc),
                duration_ms=_elapsed_ms(start),
            )
        trace.state = FireState.PERSISTED

        duration = _elapsed_ms(start)
        logger.info(
            "fire_completed",
            extra={
                "tx_hash": tx_hash,
                "record_id": str(stored.record_id),
                "app_version": decision.version_to_run,
                "duration_ms": duration,
            },
        )
        return FireResult(
            job_id=job.job_id,
            kind=job.kind,
            status=FireStatus.PERSISTED,
            state=FireState.PERSISTED,
            tx_hash=tx_hash,
            record_id=stored.record_id,
            version_run=decision.version_to_run,
            version_advanced=decision.advanced,
            duration_ms=duration,
        )

    def _run_steps(
        self,
        job: ScheduledOperation,
        prepared: PreparedOperation,
        trace: _FireTrace,
    ) -> tuple[str, dict[str, Any]]:
        """Precheck then execute each step in order.  Returns the final tx hash."""
        context = AbilityContext(delegator_address=job.owner_address)
        terms = dict(prepared.terms)
        last = len(prepared.steps) - 1
        tx_hash = ""

        for index, step in enumerate(prepared.steps):
            trace.ability = step.ability
            trace.params = step.params
            trace.response = None

            precheck = self._invoke(step, "precheck", context, trace)
            if not precheck.success:
                logger.warning(
                    "ability_precheck_rejected",
                    extra={"ability": step.ability, "error": precheck.error},
                )
                raise PrecheckRejectedError(
                    step.ability, precheck.raw, step.params, job.owner_address,
                )
            if index == last:
                trace.state = FireState.PRECHECKED

            execution = self._invoke(step, "execute", context, trace)
            if not execution.success:
                logger.warning(
                    "ability_execute_rejected",
                    extra={"ability": step.ability, "error": execution.error},
                )
                raise ExecutionRejectedError(
                    step.ability, execution.raw, step.params, job.owner_address,
                )

            step_hash = execution.tx_hash(step.tx_hash_key)
            if step_hash is None:
                raise ExecutionRejectedError(
                    step.ability,
                    {**execution.raw, "error": "no transaction hash in result"},
                    step.params,
                    job.owner_address,
                )

            logger.info(
                "ability_executed",
                extra={"ability": step.ability, "tx_hash": step_hash},
            )
            if index == last:
                tx_hash = step_hash
                trace.tx_hash = step_hash
                trace.state = FireState.EXECUTED
            else:
                terms[step.record_as or f"{step.ability}_tx_hash"] = step_hash

        return tx_hash, terms

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _invoke(
        self,
        step: AbilityStep,
        phase: str,
        context: AbilityContext,
        trace: _FireTrace,
    ) -> AbilityResult:
        method = step.client.precheck if phase == "precheck" else step.client.execute
        result = AbilityResult.from_payload(
            self._call(method, step.params, context, phase=f"{step.ability} {phase}")
        )
        trace.response = result.raw
        return result

    def _call(
        self,
        fn: Callable[..., Any],
        *args: Any,
        phase: str,
        timeout: float | None = None,
    ) -> Any:
        try:
            return self._caller.call(
                fn, *args,
                timeout=timeout if timeout is not None else self._call_timeout,
                phase=phase,
            )
        except CollaboratorTimeoutError as exc:
            job_id = _firing_job.get()
            if job_id is not None and exc.pending is not None:
                self._guard.defer(job_id, exc.pending)
            raise

    def _disable(
        self, job: ScheduledOperation, trace: _FireTrace, exc: Exception,
    ) -> OperationDisabledError:
        reason = str(exc)
        self._job_store.disable(job.job_id, reason)
        logger.error(
            "operation_disabled",
            extra={
                "state": trace.state.value,
                "reason": reason,
                "error_code": getattr(exc, "code", type(exc).__name__),
            },
        )
        disabled = OperationDisabledError(str(job.job_id), job.kind.value, reason)
        disabled.with_context(
            cause_code=getattr(exc, "code", None),
            state=trace.state.value,
            tx_hash=trace.tx_hash,
        )
        return disabled


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
