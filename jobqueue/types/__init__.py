"""
Type definitions for the job queue.
Contains input/output type definitions for all functions, grouped by module.
"""

from jobqueue.types.api import (
    CreateJobRequest,
    CreateJobResponse,
    DeadLetterResponse,
    ErrorResponse,
    HealthResponse,
    JobStatusResponse,
)
from jobqueue.types.job import (
    BackoffPolicy,
    DeadLetterRecord,
    EnqueueResult,
    JobContext,
    Outcome,
    OutcomeKind,
    QueueConfig,
    QueueCounts,
    QueuedJob,
    RateLimit,
    RetryPolicy,
)

__all__ = [
    # API types
    "CreateJobRequest",
    "CreateJobResponse",
    "JobStatusResponse",
    "DeadLetterResponse",
    "HealthResponse",
    "ErrorResponse",
    # Job types
    "BackoffPolicy",
    "RetryPolicy",
    "RateLimit",
    "QueueConfig",
    "QueuedJob",
    "EnqueueResult",
    "QueueCounts",
    "DeadLetterRecord",
    "Outcome",
    "OutcomeKind",
    "JobContext",
]
