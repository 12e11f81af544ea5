"""
Error taxonomy for the job lifecycle engine.

Validation errors (InvalidKey, UnsupportedJobType) surface synchronously to
callers. Processing errors never leave the retry/dead-letter machinery.
"""

from enum import StrEnum


class JobQueueError(Exception):
    """Base class for all job queue errors."""


class ConfigurationError(JobQueueError):
    """Required configuration is missing. Fatal at startup."""


class InvalidKeyReason(StrEnum):
    EMPTY = "empty"
    LOOKS_LIKE_JOB_ID = "looks_like_job_id"


class InvalidKey(JobQueueError):
    """The idempotency key cannot be turned into a job id."""

    def __init__(self, reason: InvalidKeyReason, message: str | None = None):
        self.reason = reason
        if message is None:
            if reason is InvalidKeyReason.LOOKS_LIKE_JOB_ID:
                message = (
                    "idempotencyKey looks like a job id (64 hex characters); "
                    "pass the original semantic key instead"
                )
            else:
                message = "idempotencyKey is required"
        super().__init__(message)


class UnsupportedJobType(JobQueueError):
    """No queue is registered for the job type."""

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"Unsupported job type: {job_type}")


class EnqueueFailure(JobQueueError):
    """The broker could not be reached or rejected the submission."""


class ProcessingFailure(JobQueueError):
    """A retryable failure raised while running a job's side effect."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class TerminalFailure(JobQueueError):
    """A job exhausted its attempts."""

    def __init__(self, job_id: str, attempts_made: int, reason: str):
        self.job_id = job_id
        self.attempts_made = attempts_made
        self.reason = reason
        super().__init__(f"Job {job_id} failed after {attempts_made} attempts: {reason}")


class DeadLetterWriteFailure(JobQueueError):
    """Persisting a dead-letter record failed. Logged, never retried."""


class NotFound(JobQueueError):
    """A job or dead-letter record does not exist."""
