"""
Prometheus metrics.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from jobqueue.constants import (
    METRIC_DLQ_JOBS,
    METRIC_DLQ_SIZE,
    METRIC_DLQ_WRITE_FAILURES,
    METRIC_JOB_DURATION,
    METRIC_JOBS_SUBMITTED,
    METRIC_JOBS_TOTAL,
    METRIC_LEASE_EXPIRED,
    METRIC_QUEUE_ACTIVE,
    METRIC_QUEUE_DELAYED,
    METRIC_QUEUE_WAITING,
)
from jobqueue.types.job import QueueCounts

# Global metrics instance
_metrics: "Metrics | None" = None


class Metrics:
    """
    Prometheus metrics for the job queue.

    Collects metrics for:
    - Job submissions
    - Job outcomes and execution duration per job type
    - Dead-letter escalations, write failures and store size
    - Queue depth (waiting, active, delayed) per queue
    - Expired leases
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.jobs_submitted = Counter(
            METRIC_JOBS_SUBMITTED,
            "Total number of jobs accepted for enqueue",
            ["type"],
            registry=self._registry,
        )

        self.jobs_total = Counter(
            METRIC_JOBS_TOTAL,
            "Total jobs processed",
            ["status", "type"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["type"],
            buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
            registry=self._registry,
        )

        self.dlq_jobs = Counter(
            METRIC_DLQ_JOBS,
            "Total jobs moved to the dead letter queue",
            ["type"],
            registry=self._registry,
        )

        self.dlq_write_failures = Counter(
            METRIC_DLQ_WRITE_FAILURES,
            "Dead letter writes that could not be persisted",
            ["type"],
            registry=self._registry,
        )

        self.dlq_size = Gauge(
            METRIC_DLQ_SIZE,
            "Total number of jobs currently in the dead letter queue",
            registry=self._registry,
        )

        self.queue_waiting = Gauge(
            METRIC_QUEUE_WAITING,
            "Number of waiting jobs per queue",
            ["queue"],
            registry=self._registry,
        )

        self.queue_active = Gauge(
            METRIC_QUEUE_ACTIVE,
            "Number of active jobs per queue",
            ["queue"],
            registry=self._registry,
        )

        self.queue_delayed = Gauge(
            METRIC_QUEUE_DELAYED,
            "Number of delayed jobs per queue",
            ["queue"],
            registry=self._registry,
        )

        self.lease_expired = Counter(
            METRIC_LEASE_EXPIRED,
            "Total number of expired leases returned to the queue",
            registry=self._registry,
        )

    def record_job_submitted(self, job_type: str) -> None:
        """Record a newly accepted job."""
        self.jobs_submitted.labels(type=job_type).inc()

    def record_job_outcome(
        self,
        job_type: str,
        status: str,
        duration_seconds: float,
    ) -> None:
        """Record the outcome and duration of one job attempt."""
        self.jobs_total.labels(status=status, type=job_type).inc()
        self.job_duration.labels(type=job_type).observe(duration_seconds)

    def record_dead_letter(self, job_type: str) -> None:
        self.dlq_jobs.labels(type=job_type).inc()

    def record_dead_letter_write_failure(self, job_type: str) -> None:
        self.dlq_write_failures.labels(type=job_type).inc()

    def record_lease_expired(self, count: int = 1) -> None:
        """Record expired leases."""
        self.lease_expired.inc(count)

    def update_queue_counts(self, queue: str, counts: QueueCounts) -> None:
        """Publish queue depth gauges for a queue."""
        self.queue_waiting.labels(queue=queue).set(counts.waiting)
        self.queue_active.labels(queue=queue).set(counts.active)
        self.queue_delayed.labels(queue=queue).set(counts.delayed)

    def update_dead_letter_size(self, size: int) -> None:
        self.dlq_size.set(size)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> Metrics:
    """
    Set up and return the metrics instance.

    Returns:
        Metrics: The metrics instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = Metrics()
    return _metrics


def get_metrics() -> Metrics:
    """
    Get the metrics instance, creating it on first use.

    Returns:
        Metrics: The metrics instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
