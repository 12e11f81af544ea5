"""
Queue registry and router.

The registry is an explicit value built once at startup and handed to the
router and the worker pools. Nothing reads it as ambient global state.
"""

import logging
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any

from jobqueue.broker.base import JobBroker
from jobqueue.constants import (
    JOB_TYPE_CLEANUP_TEMP,
    JOB_TYPE_GENERATE_REPORT,
    JOB_TYPE_WELCOME_EMAIL,
    QUEUE_CLEANUP,
    QUEUE_EMAIL,
    QUEUE_REPORT,
)
from jobqueue.engine.idempotency import IdempotencyResolver
from jobqueue.errors import EnqueueFailure, UnsupportedJobType
from jobqueue.observability.metrics import Metrics, get_metrics
from jobqueue.types.job import BackoffPolicy, EnqueueResult, QueueConfig, RateLimit

logger = logging.getLogger(__name__)


class QueueRegistry:
    """
    Immutable mapping of job types to queue configurations.
    """

    def __init__(self, queues: Iterable[QueueConfig], routes: Mapping[str, str]):
        """
        Args:
            queues: Queue configurations, one per queue name.
            routes: Job type -> queue name.

        Raises:
            ValueError: If a queue name is duplicated or a route targets an unknown queue.
        """
        by_name: dict[str, QueueConfig] = {}
        for config in queues:
            if config.name in by_name:
                raise ValueError(f"Duplicate queue: {config.name}")
            by_name[config.name] = config

        for job_type, queue_name in routes.items():
            if queue_name not in by_name:
                raise ValueError(f"Job type {job_type!r} routes to unknown queue {queue_name!r}")

        self._queues = MappingProxyType(by_name)
        self._routes = MappingProxyType(dict(routes))

    @property
    def queues(self) -> list[QueueConfig]:
        return list(self._queues.values())

    @property
    def job_types(self) -> list[str]:
        return list(self._routes)

    def queue(self, name: str) -> QueueConfig:
        """
        Get a queue by name.

        Raises:
            KeyError: If the queue is not registered.
        """
        return self._queues[name]

    def route_for(self, job_type: str) -> QueueConfig:
        """
        Get the queue configuration for a job type.

        Raises:
            UnsupportedJobType: If no queue handles the type.
        """
        queue_name = self._routes.get(job_type)
        if queue_name is None:
            raise UnsupportedJobType(job_type)
        return self._queues[queue_name]


def default_registry() -> QueueRegistry:
    """Build the standard queue layout."""
    return QueueRegistry(
        queues=[
            QueueConfig(name=QUEUE_EMAIL, concurrency=5, rate_limit=RateLimit(max=10, window_ms=1000)),
            QueueConfig(name=QUEUE_REPORT, concurrency=2, rate_limit=RateLimit(max=5, window_ms=1000)),
            QueueConfig(name=QUEUE_CLEANUP, concurrency=1, rate_limit=RateLimit(max=2, window_ms=1000)),
        ],
        routes={
            JOB_TYPE_WELCOME_EMAIL: QUEUE_EMAIL,
            JOB_TYPE_GENERATE_REPORT: QUEUE_REPORT,
            JOB_TYPE_CLEANUP_TEMP: QUEUE_CLEANUP,
        },
    )


class QueueRouter:
    """
    Routes job submissions to their queue with a derived, deduplicating id.
    """

    def __init__(
        self,
        registry: QueueRegistry,
        broker: JobBroker,
        resolver: IdempotencyResolver | None = None,
        metrics: Metrics | None = None,
    ):
        self._registry = registry
        self._broker = broker
        self._resolver = resolver or IdempotencyResolver()
        self._metrics = metrics or get_metrics()

    @property
    def registry(self) -> QueueRegistry:
        return self._registry

    def route_for(self, job_type: str) -> QueueConfig:
        return self._registry.route_for(job_type)

    async def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        idempotency_key: str,
        backoff: BackoffPolicy | None = None,
    ) -> EnqueueResult:
        """
        Submit a job. Resubmitting the same key returns the existing job id.

        Args:
            job_type: The job type, selects the queue.
            payload: Job payload.
            idempotency_key: Semantic key identifying the request.
            backoff: Overrides the queue's backoff policy (used by replay).

        Raises:
            UnsupportedJobType: If the type has no queue.
            InvalidKey: If the key cannot be resolved.
            EnqueueFailure: If the broker rejects or cannot take the job.
        """
        config = self._registry.route_for(job_type)
        job_id = self._resolver.resolve(idempotency_key)
        return await self.submit(config, job_id, job_type, payload, backoff=backoff)

    async def submit(
        self,
        config: QueueConfig,
        job_id: str,
        job_type: str,
        payload: dict[str, Any],
        backoff: BackoffPolicy | None = None,
    ) -> EnqueueResult:
        """Hand an already-identified job to the broker."""
        try:
            result = await self._broker.enqueue(
                config.name,
                job_id,
                job_type,
                payload,
                max_attempts=config.retry.max_attempts,
                backoff=backoff or config.retry.backoff,
            )
        except Exception as e:
            logger.exception(
                "Enqueue failed",
                extra={"job_id": job_id, "queue": config.name, "job_type": job_type}
            )
            raise EnqueueFailure(f"Could not enqueue job {job_id}: {e}") from e

        if result.created:
            self._metrics.record_job_submitted(job_type)

        logger.info(
            "Job enqueued" if result.created else "Job already enqueued (idempotent)",
            extra={"job_id": result.job_id, "queue": config.name, "job_type": job_type}
        )
        return result
