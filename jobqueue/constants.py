"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobState(StrEnum):
    """
    Job lifecycle states as tracked by the broker.

    State transitions:
    - WAITING -> ACTIVE (lease acquired)
    - ACTIVE -> COMPLETED (success or recovered no-op)
    - ACTIVE -> DELAYED (retry scheduled with backoff)
    - DELAYED -> ACTIVE (lease acquired once the delay elapsed)
    - ACTIVE -> FAILED (attempts exhausted, handed to the dead-letter store)
    - ACTIVE -> WAITING (lease expired - crash recovery)
    """

    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"


class BackoffKind(StrEnum):
    """Delay strategy applied before redelivering a failed job."""

    FIXED = "fixed"
    EXPONENTIAL = "exponential"


class SideEffectState(StrEnum):
    """Reservation states for externally visible side effects."""

    RESERVED = "reserved"
    DONE = "done"


# Job types
JOB_TYPE_WELCOME_EMAIL = "welcome-email"
JOB_TYPE_GENERATE_REPORT = "generate-report"
JOB_TYPE_CLEANUP_TEMP = "cleanup-temp"

# Queue names
QUEUE_EMAIL = "email-queue"
QUEUE_REPORT = "report-queue"
QUEUE_CLEANUP = "cleanup-queue"

# Default values
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_KIND = BackoffKind.FIXED
DEFAULT_BACKOFF_DELAY_MS = 10_000
REPLAY_BACKOFF_KIND = BackoffKind.EXPONENTIAL
REPLAY_BACKOFF_DELAY_MS = 1_000
DEFAULT_DLQ_INSPECT_LIMIT = 10

# Identity
JOB_ID_PATTERN = r"^[0-9a-fA-F]{64}$"
SIDE_EFFECT_KEY_PREFIX = "side-effect:"

# Payload flags and replay markers (wire names)
FORCE_FAIL_FLAG = "forceFail"
REPLAYED_FROM_FIELD = "replayedFromJobId"
REPLAYED_AT_FIELD = "replayedAt"

# Metrics names
METRIC_JOBS_SUBMITTED = "jobs_submitted_total"
METRIC_JOBS_TOTAL = "jobs_total"
METRIC_JOB_DURATION = "job_duration_seconds"
METRIC_DLQ_JOBS = "dlq_jobs_total"
METRIC_DLQ_WRITE_FAILURES = "dlq_write_failures_total"
METRIC_DLQ_SIZE = "queue_dead_letter_size"
METRIC_QUEUE_WAITING = "queue_waiting_jobs"
METRIC_QUEUE_ACTIVE = "queue_active_jobs"
METRIC_QUEUE_DELAYED = "queue_delayed_jobs"
METRIC_LEASE_EXPIRED = "lease_expired_total"

# Outcome labels
OUTCOME_SUCCESS = "success"
OUTCOME_FAILURE = "failure"

# Trace span names
SPAN_EXECUTE_JOB = "execute_job"
