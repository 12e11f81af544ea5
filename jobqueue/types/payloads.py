"""
Per-job-type payload schemas.

Unknown keys are preserved so that replay markers and caller metadata travel
with the payload.
"""

from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError

from jobqueue.constants import (
    JOB_TYPE_CLEANUP_TEMP,
    JOB_TYPE_GENERATE_REPORT,
    JOB_TYPE_WELCOME_EMAIL,
)

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class JobPayloadModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    # Must be a JSON boolean; the worker only honours a literal true
    force_fail: StrictBool | None = Field(default=None, alias="forceFail")


class WelcomeEmailPayload(JobPayloadModel):
    email: str = Field(..., pattern=EMAIL_PATTERN)


class GenerateReportPayload(JobPayloadModel):
    report_type: str = Field(..., min_length=1, alias="reportType")


class CleanupTempPayload(JobPayloadModel):
    directory: str = Field(..., min_length=1)


PAYLOAD_SCHEMAS: dict[str, type[JobPayloadModel]] = {
    JOB_TYPE_WELCOME_EMAIL: WelcomeEmailPayload,
    JOB_TYPE_GENERATE_REPORT: GenerateReportPayload,
    JOB_TYPE_CLEANUP_TEMP: CleanupTempPayload,
}


def validate_payload(job_type: str, payload: dict) -> dict:
    """
    Validate a payload against the schema for its job type.

    Job types without a schema are passed through unchanged.

    Returns:
        The payload, unchanged, when it validates.

    Raises:
        pydantic.ValidationError: If the payload does not match the schema.
    """
    schema = PAYLOAD_SCHEMAS.get(job_type)
    if schema is not None:
        schema.model_validate(payload)
    return payload


__all__ = [
    "PAYLOAD_SCHEMAS",
    "ValidationError",
    "validate_payload",
    "WelcomeEmailPayload",
    "GenerateReportPayload",
    "CleanupTempPayload",
]
