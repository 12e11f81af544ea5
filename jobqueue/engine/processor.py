"""
Job execution guarded by side-effect reservations.
"""

import logging
import time

from jobqueue.constants import (
    OUTCOME_FAILURE,
    OUTCOME_SUCCESS,
    SPAN_EXECUTE_JOB,
)
from jobqueue.engine.guard import SideEffectGuard
from jobqueue.errors import ProcessingFailure
from jobqueue.observability.metrics import Metrics, get_metrics
from jobqueue.observability.tracing import job_span
from jobqueue.types.job import JobContext, Outcome, QueuedJob
from jobqueue.worker.handlers import EffectRegistry

logger = logging.getLogger(__name__)


class JobProcessor:
    """
    Runs one attempt of a job and reports an Outcome.

    Sequence:
    1. A job flagged with forceFail fails immediately
    2. The side effect is reserved; losing the reservation means another
       delivery already handled it (RecoveredNoOp)
    3. The type's handler runs, then the reservation is marked done. A
       ProcessingFailure releases the reservation for the retry; any other
       exception leaves it held and fails the job terminally

    Every path records a duration observation and an outcome counter
    tagged by job type. RecoveredNoOp counts as success.
    """

    def __init__(
        self,
        guard: SideEffectGuard,
        effects: EffectRegistry,
        metrics: Metrics | None = None,
    ):
        self._guard = guard
        self._effects = effects
        self._metrics = metrics or get_metrics()

    async def process(self, job: QueuedJob) -> Outcome:
        start_time = time.monotonic()

        with job_span(
            SPAN_EXECUTE_JOB,
            job_id=job.id,
            job_type=job.type,
            queue=job.queue,
            attempt=job.attempts_made + 1,
        ) as span:
            outcome = await self._run(job, start_time)
            span.set_attribute("outcome", outcome.kind.value)

        self._metrics.record_job_outcome(
            job_type=job.type,
            status=OUTCOME_FAILURE if outcome.is_failure else OUTCOME_SUCCESS,
            duration_seconds=outcome.duration_seconds,
        )
        return outcome

    async def _run(self, job: QueuedJob, start_time: float) -> Outcome:
        def elapsed() -> float:
            return time.monotonic() - start_time

        if job.force_fail:
            logger.info("Forcing job failure", extra={"job_id": job.id})
            return Outcome.failure("Intentional failure (forceFail)", elapsed())

        handler = self._effects.get(job.type)
        if handler is None:
            logger.error(
                f"No handler for job type: {job.type}",
                extra={"job_id": job.id}
            )
            return Outcome.failure(f"No handler registered for job type: {job.type}", elapsed())

        try:
            reserved = await self._guard.reserve(job.id)
        except Exception as e:
            logger.exception("Side effect reservation failed", extra={"job_id": job.id})
            return Outcome.failure(f"Side effect reservation failed: {e}", elapsed())

        if not reserved:
            logger.info("Job completed safely (recovered)", extra={"job_id": job.id})
            return Outcome.recovered(elapsed())

        try:
            await handler(JobContext.from_job(job))
        except ProcessingFailure as e:
            logger.warning(
                "Handler failed before producing its side effect",
                extra={"job_id": job.id, "error": e.reason}
            )
            try:
                await self._guard.release(job.id)
            except Exception:
                logger.exception("Failed to release side effect reservation", extra={"job_id": job.id})
            return Outcome.failure(e.reason, elapsed())
        except Exception as e:
            # Effect state unknown: the reservation stays and the job is not retried
            logger.exception(
                "Handler raised exception",
                extra={"job_id": job.id, "error": str(e)}
            )
            return Outcome.failure(f"Handler exception: {e}", elapsed(), terminal=True)

        try:
            await self._guard.mark_done(job.id)
        except Exception:
            # The effect ran; a redelivery will still see the reservation
            logger.exception("Failed to mark side effect done", extra={"job_id": job.id})

        logger.info("Job completed safely", extra={"job_id": job.id})
        return Outcome.success(elapsed())
