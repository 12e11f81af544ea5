"""
Retry-or-escalate decisions for failed job attempts.
"""

import logging
from enum import StrEnum

from jobqueue.broker.base import JobBroker
from jobqueue.engine.dead_letter import DeadLetterEscalator
from jobqueue.errors import TerminalFailure
from jobqueue.types.job import QueuedJob

logger = logging.getLogger(__name__)


class RetryDecision(StrEnum):
    RETRY = "retry"
    TERMINAL = "terminal"
    LEASE_LOST = "lease_lost"


class RetryCoordinator:
    """
    Decides retry vs. terminal failure for a failed attempt.

    The attempt count comes from the job as returned by the broker's lease,
    and the broker only applies the transition while that count is
    unchanged, so the decision stays correct across process restarts.
    """

    def __init__(self, broker: JobBroker, escalator: DeadLetterEscalator):
        self._broker = broker
        self._escalator = escalator

    async def handle_failure(
        self,
        job: QueuedJob,
        worker_id: str,
        reason: str,
        terminal: bool = False,
    ) -> RetryDecision:
        """
        Count the failure and either schedule a retry or escalate.

        Args:
            job: The job as leased by this worker.
            worker_id: The lease owner.
            reason: Failure reason.
            terminal: Escalate now, whatever attempts remain.

        Returns:
            The decision taken. LEASE_LOST means the broker refused the
            transition because another worker or the reaper took the job.
        """
        attempts = job.attempts_made + 1

        if attempts < job.max_attempts and not terminal:
            delay_ms = job.backoff.delay_for(attempts)
            updated = await self._broker.retry_later(job, worker_id, reason, delay_ms)
            if updated is None:
                logger.warning(
                    "Lease lost before retry could be scheduled",
                    extra={"job_id": job.id, "worker_id": worker_id}
                )
                return RetryDecision.LEASE_LOST

            logger.info(
                "Job scheduled for retry",
                extra={
                    "job_id": job.id,
                    "attempts_made": updated.attempts_made,
                    "max_attempts": job.max_attempts,
                    "delay_ms": delay_ms,
                    "error": reason,
                }
            )
            return RetryDecision.RETRY

        updated = await self._broker.fail(job, worker_id, reason)
        if updated is None:
            logger.warning(
                "Lease lost before terminal failure could be recorded",
                extra={"job_id": job.id, "worker_id": worker_id}
            )
            return RetryDecision.LEASE_LOST

        failure = TerminalFailure(updated.id, updated.attempts_made, reason)
        logger.warning(str(failure), extra={"job_id": updated.id, "job_type": updated.type})

        await self._escalator.escalate(updated, reason)
        return RetryDecision.TERMINAL
