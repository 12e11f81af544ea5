"""
Job-related type definitions for internal use.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import UUID

from jobqueue.constants import (
    DEFAULT_BACKOFF_DELAY_MS,
    DEFAULT_BACKOFF_KIND,
    DEFAULT_MAX_ATTEMPTS,
    FORCE_FAIL_FLAG,
    BackoffKind,
    JobState,
)


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Delay applied before a failed job is redelivered.

    Fixed policies wait ``delay_ms`` every time. Exponential policies double
    the delay for every attempt already made: ``delay_ms * 2 ** (n - 1)``.
    """

    kind: BackoffKind = DEFAULT_BACKOFF_KIND
    delay_ms: int = DEFAULT_BACKOFF_DELAY_MS

    def __post_init__(self) -> None:
        if self.delay_ms < 0:
            raise ValueError("delay_ms must be >= 0")

    def delay_for(self, attempts_made: int) -> int:
        """Get the redelivery delay in milliseconds after ``attempts_made`` failures."""
        if self.kind == BackoffKind.EXPONENTIAL:
            return self.delay_ms * 2 ** max(attempts_made - 1, 0)
        return self.delay_ms


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and backoff for jobs on a queue."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")


@dataclass(frozen=True)
class RateLimit:
    """At most ``max`` dequeues per ``window_ms`` milliseconds."""

    max: int
    window_ms: int

    def __post_init__(self) -> None:
        if self.max < 1:
            raise ValueError("rate limit max must be >= 1")
        if self.window_ms <= 0:
            raise ValueError("rate limit window_ms must be > 0")

    @property
    def window_seconds(self) -> float:
        return self.window_ms / 1000.0


@dataclass(frozen=True)
class QueueConfig:
    """
    Static per-queue policy.
    Fixed at startup and read-only thereafter.
    """

    name: str
    concurrency: int
    rate_limit: RateLimit
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")


@dataclass
class QueuedJob:
    """
    A job as seen through the broker.

    The broker owns the job for its lifetime. The engine only reads it and
    mutates attempts and state through broker operations.
    """

    id: str
    type: str
    queue: str
    payload: dict[str, Any]
    attempts_made: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    state: JobState = JobState.WAITING
    created_at: datetime | None = None
    processed_at: datetime | None = None
    finished_at: datetime | None = None
    failed_reason: str | None = None
    lease_owner: str | None = None
    lease_token: str | None = None
    lease_expires_at: datetime | None = None

    @property
    def force_fail(self) -> bool:
        """Check the test flag that makes every attempt fail."""
        return self.payload.get(FORCE_FAIL_FLAG) is True


@dataclass(frozen=True)
class EnqueueResult:
    """Result of an enqueue call. ``created`` is False for deduplicated submissions."""

    job_id: str
    created: bool


@dataclass(frozen=True)
class QueueCounts:
    """Point-in-time job counts for one queue."""

    waiting: int = 0
    active: int = 0
    delayed: int = 0


@dataclass
class DeadLetterRecord:
    """
    A terminally failed job.

    Created exactly once per original job id. Replay consumes it without
    deleting it and only touches the replay bookkeeping fields.
    """

    id: UUID
    original_job_id: str
    job_type: str
    queue: str
    payload: dict[str, Any]
    failed_reason: str
    attempts_made: int
    failed_at: datetime
    replay_count: int = 0
    last_replayed_at: datetime | None = None
    last_replay_job_id: str | None = None


class OutcomeKind(StrEnum):
    SUCCESS = "success"
    RECOVERED_NOOP = "recovered_noop"
    FAILURE = "failure"


@dataclass(frozen=True)
class Outcome:
    """
    Result of processing one job attempt.

    Returned by the processor and consumed directly by the worker pool and
    retry coordinator. A terminal failure skips the remaining attempts: it
    marks a handler that failed with its side effect in an unknown state,
    which a redelivery could neither run again nor report as done.
    """

    kind: OutcomeKind
    reason: str | None = None
    duration_seconds: float = 0.0
    terminal: bool = False

    @classmethod
    def success(cls, duration_seconds: float = 0.0) -> "Outcome":
        return cls(OutcomeKind.SUCCESS, duration_seconds=duration_seconds)

    @classmethod
    def recovered(cls, duration_seconds: float = 0.0) -> "Outcome":
        return cls(OutcomeKind.RECOVERED_NOOP, duration_seconds=duration_seconds)

    @classmethod
    def failure(cls, reason: str, duration_seconds: float = 0.0, terminal: bool = False) -> "Outcome":
        return cls(OutcomeKind.FAILURE, reason=reason, duration_seconds=duration_seconds, terminal=terminal)

    @property
    def is_failure(self) -> bool:
        return self.kind == OutcomeKind.FAILURE


@dataclass
class JobContext:
    """
    Context passed to side-effect handlers during execution.
    """

    job_id: str
    job_type: str
    attempt: int
    max_attempts: int
    payload: dict[str, Any]

    @classmethod
    def from_job(cls, job: QueuedJob) -> "JobContext":
        return cls(
            job_id=job.id,
            job_type=job.type,
            attempt=job.attempts_made + 1,
            max_attempts=job.max_attempts,
            payload=job.payload,
        )

    @property
    def is_last_attempt(self) -> bool:
        """Check if this is the last retry attempt."""
        return self.attempt >= self.max_attempts

    @property
    def remaining_attempts(self) -> int:
        """Get remaining retry attempts."""
        return max(0, self.max_attempts - self.attempt)
