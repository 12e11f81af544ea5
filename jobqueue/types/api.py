"""
API request and response type definitions.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from jobqueue.constants import JobState


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateJobRequest(CamelModel):
    """Request body for submitting a job."""

    type: str = Field(..., min_length=1, description="Job type selecting queue and processor")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job payload data")
    idempotency_key: str = Field(..., description="Semantic key identifying the logical request")


class CreateJobResponse(CamelModel):
    """Response body after accepting a job."""

    status: str = "accepted"
    job_id: str
    message: str = "Job enqueued successfully"


class JobStatusResponse(CamelModel):
    """Status of a job as tracked by the broker."""

    job_id: str
    type: str
    state: JobState
    created_at: datetime | None
    processed_at: datetime | None
    failed_reason: str | None


class DeadLetterResponse(CamelModel):
    """A dead-letter record as shown to operators."""

    id: UUID
    original_job_id: str
    job_type: str
    queue: str
    payload: dict[str, Any]
    failed_reason: str
    attempts_made: int
    failed_at: datetime
    replay_count: int
    last_replayed_at: datetime | None
    last_replay_job_id: str | None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    queues: dict[str, dict[str, int]] = Field(default_factory=dict)
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Standard error response."""

    status: str = "fail"
    message: str
    detail: Any | None = None
