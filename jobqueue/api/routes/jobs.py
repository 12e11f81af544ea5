"""
Job submission and status routes.
"""

import logging

from fastapi import APIRouter, status

from jobqueue.api.deps import EngineDep
from jobqueue.errors import NotFound
from jobqueue.types.api import CreateJobRequest, CreateJobResponse, JobStatusResponse
from jobqueue.types.payloads import validate_payload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["Jobs"])


@router.post(
    "",
    response_model=CreateJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit a job",
    description="Submit a job. The idempotency key deterministically selects the job id.",
)
async def create_job(request: CreateJobRequest, engine: EngineDep) -> CreateJobResponse:
    """
    Submit a job.

    Submission is idempotent on the idempotency key: resubmitting the same
    key returns the existing job id and creates nothing.

    Args:
        request: Job submission request.
        engine: Engine components.

    Returns:
        CreateJobResponse with the job id.

    Raises:
        UnsupportedJobType: If no queue handles the type (400).
        pydantic.ValidationError: If the payload does not match its schema (400).
        InvalidKey: If the idempotency key is empty or looks like a job id (400).
        EnqueueFailure: If the broker cannot take the job (503).
    """
    engine.router.route_for(request.type)
    validate_payload(request.type, request.payload)

    result = await engine.router.enqueue(
        request.type,
        request.payload,
        request.idempotency_key,
    )

    return CreateJobResponse(
        job_id=result.job_id,
        message="Job enqueued successfully" if result.created else "Job already exists (idempotent)",
    )


@router.get(
    "/{job_id}/status",
    response_model=JobStatusResponse,
    summary="Get job status",
    description="Get the broker state of a job.",
)
async def get_job_status(job_id: str, engine: EngineDep) -> JobStatusResponse:
    """
    Get job status by ID.

    Raises:
        NotFound: If the job does not exist (404).
    """
    job = await engine.broker.get_job(job_id)
    if job is None:
        raise NotFound(f"Job {job_id} not found")

    return JobStatusResponse(
        job_id=job.id,
        type=job.type,
        state=job.state,
        created_at=job.created_at,
        processed_at=job.processed_at,
        failed_reason=job.failed_reason,
    )
