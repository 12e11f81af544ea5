"""
Dead-letter escalation, inspection and replay.
"""

import logging
from datetime import datetime, timezone
from uuid import UUID

from jobqueue.broker.base import DeadLetterStore
from jobqueue.constants import (
    DEFAULT_DLQ_INSPECT_LIMIT,
    REPLAY_BACKOFF_DELAY_MS,
    REPLAY_BACKOFF_KIND,
    REPLAYED_AT_FIELD,
    REPLAYED_FROM_FIELD,
)
from jobqueue.engine.idempotency import IdempotencyResolver
from jobqueue.engine.registry import QueueRouter
from jobqueue.errors import DeadLetterWriteFailure, NotFound
from jobqueue.observability.metrics import Metrics, get_metrics
from jobqueue.types.job import BackoffPolicy, DeadLetterRecord, QueueConfig, QueuedJob

logger = logging.getLogger(__name__)

MAX_INSPECT_LIMIT = 1000


def replay_key(record: DeadLetterRecord) -> str:
    """Idempotency key of the n-th replay of a record."""
    return f"replay:{record.id}:{record.replay_count}"


class DeadLetterEscalator:
    """
    Persists terminally failed jobs and replays them on request.

    Escalation writes a record at most once per original job id and counts
    it exactly once. A failed write is logged and counted but never retried
    or propagated: the failure then exists only in logs and metrics.
    """

    def __init__(
        self,
        store: DeadLetterStore,
        router: QueueRouter,
        metrics: Metrics | None = None,
        resolver: IdempotencyResolver | None = None,
        replay_backoff: BackoffPolicy | None = None,
    ):
        self._store = store
        self._router = router
        self._metrics = metrics or get_metrics()
        self._resolver = resolver or IdempotencyResolver()
        self._replay_backoff = replay_backoff or BackoffPolicy(
            kind=REPLAY_BACKOFF_KIND,
            delay_ms=REPLAY_BACKOFF_DELAY_MS,
        )

    async def escalate(self, job: QueuedJob, reason: str) -> DeadLetterRecord | None:
        """
        Write the dead-letter record for ``job``.

        Returns:
            The new record, or None if the write failed or the job was
            already escalated.
        """
        try:
            record = await self._store.add(job, reason, failed_at=datetime.now(timezone.utc))
        except Exception as e:
            failure = DeadLetterWriteFailure(f"Could not persist dead letter for job {job.id}: {e}")
            logger.error(
                str(failure),
                exc_info=True,
                extra={"job_id": job.id, "job_type": job.type, "error": reason}
            )
            self._metrics.record_dead_letter_write_failure(job.type)
            return None

        if record is None:
            logger.info("Job already in dead letter queue", extra={"job_id": job.id})
            return None

        self._metrics.record_dead_letter(job.type)
        logger.warning(
            "Job moved to dead letter queue",
            extra={
                "job_id": job.id,
                "dlq_id": str(record.id),
                "job_type": job.type,
                "attempts_made": record.attempts_made,
                "error": reason,
            }
        )
        return record

    async def inspect(self, limit: int = DEFAULT_DLQ_INSPECT_LIMIT) -> list[DeadLetterRecord]:
        """
        List dead-letter records, most recent first.

        Each call reads current state; ``limit`` is clamped to 1..1000.
        """
        limit = max(1, min(limit, MAX_INSPECT_LIMIT))
        return await self._store.list_recent(limit)

    async def get(self, record_id: UUID | str) -> DeadLetterRecord:
        """
        Raises:
            NotFound: If no record has this id.
        """
        record = await self._store.get(self._parse_id(record_id))
        if record is None:
            raise NotFound(f"No DLQ job found with ID {record_id}")
        return record

    async def replay(self, record_id: UUID | str) -> str:
        """
        Re-enqueue a dead-lettered job on its original queue.

        The new job gets the original payload merged with replay markers and
        the replay backoff policy. The record is kept; its replay counter
        and last replay job id are updated.

        Returns:
            The new job id.

        Raises:
            NotFound: If no record has this id.
            EnqueueFailure: If the broker rejects the new job.
        """
        record = await self._store.begin_replay(self._parse_id(record_id))
        if record is None:
            raise NotFound(f"No DLQ job found with ID {record_id}")

        payload = {
            **record.payload,
            REPLAYED_FROM_FIELD: record.original_job_id,
            REPLAYED_AT_FIELD: datetime.now(timezone.utc).isoformat(),
        }
        job_id = self._resolver.resolve(replay_key(record))

        result = await self._router.submit(
            self._queue_for(record),
            job_id,
            record.job_type,
            payload,
            backoff=self._replay_backoff,
        )
        await self._store.finish_replay(record.id, result.job_id)

        logger.info(
            "Replayed dead letter",
            extra={
                "dlq_id": str(record.id),
                "original_job_id": record.original_job_id,
                "job_id": result.job_id,
                "queue": record.queue,
            }
        )
        return result.job_id

    def _queue_for(self, record: DeadLetterRecord) -> QueueConfig:
        try:
            return self._router.registry.queue(record.queue)
        except KeyError:
            return self._router.route_for(record.job_type)

    @staticmethod
    def _parse_id(record_id: UUID | str) -> UUID:
        if isinstance(record_id, UUID):
            return record_id
        try:
            return UUID(str(record_id))
        except ValueError as e:
            raise NotFound(f"No DLQ job found with ID {record_id}") from e
