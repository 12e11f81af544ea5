"""
Side-effect handlers per job type.

Handlers perform the externally visible work of a job. The processor fences
every handler call with a side-effect reservation, so a handler body runs at
most once per job id even though the broker may deliver the job again.

A handler signals a failure that left no visible effect by raising
ProcessingFailure. Any other exception is treated as an effect in an unknown
state.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from jobqueue.constants import (
    JOB_TYPE_CLEANUP_TEMP,
    JOB_TYPE_GENERATE_REPORT,
    JOB_TYPE_WELCOME_EMAIL,
)
from jobqueue.errors import ProcessingFailure
from jobqueue.types.job import JobContext

logger = logging.getLogger(__name__)

# Type alias for side-effect handler functions
EffectHandler = Callable[[JobContext], Awaitable[None]]

# Simulated effect durations per job type
SIMULATED_DURATION_SECONDS: dict[str, float] = {
    JOB_TYPE_WELCOME_EMAIL: 2.0,
    JOB_TYPE_GENERATE_REPORT: 3.0,
    JOB_TYPE_CLEANUP_TEMP: 1.0,
}


class EffectRegistry:
    """
    Registry of side-effect handlers keyed by job type.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, EffectHandler] = {}

    def register(self, job_type: str) -> Callable[[EffectHandler], EffectHandler]:
        """
        Decorator to register a handler.

        Example:
            @effects.register("welcome-email")
            async def send_welcome_email(context: JobContext) -> None:
                ...
        """
        def decorator(handler: EffectHandler) -> EffectHandler:
            self._handlers[job_type] = handler
            logger.debug(f"Registered handler for job type: {job_type}")
            return handler
        return decorator

    def get(self, job_type: str) -> EffectHandler | None:
        return self._handlers.get(job_type)

    def job_types(self) -> list[str]:
        return list(self._handlers.keys())


effects = EffectRegistry()


# ============================================================================
# Built-in handlers
# ============================================================================


@effects.register(JOB_TYPE_WELCOME_EMAIL)
async def send_welcome_email(context: JobContext) -> None:
    """
    Send a welcome email.

    Payload should contain:
    - email: Recipient address
    """
    email = context.payload.get("email")
    if not email:
        raise ProcessingFailure("Missing 'email' in payload")

    logger.info(
        "Sending welcome email",
        extra={"job_id": context.job_id, "email": email, "attempt": context.attempt}
    )

    await asyncio.sleep(SIMULATED_DURATION_SECONDS[JOB_TYPE_WELCOME_EMAIL])


@effects.register(JOB_TYPE_GENERATE_REPORT)
async def generate_report(context: JobContext) -> None:
    """
    Generate a report.

    Payload should contain:
    - reportType: Which report to build
    """
    report_type = context.payload.get("reportType")
    if not report_type:
        raise ProcessingFailure("Missing 'reportType' in payload")

    logger.info(
        "Generating report",
        extra={"job_id": context.job_id, "report_type": report_type}
    )

    await asyncio.sleep(SIMULATED_DURATION_SECONDS[JOB_TYPE_GENERATE_REPORT])


@effects.register(JOB_TYPE_CLEANUP_TEMP)
async def cleanup_temp(context: JobContext) -> None:
    """
    Clean up a temporary directory.

    Payload should contain:
    - directory: Directory to clean
    """
    directory = context.payload.get("directory")
    if not directory:
        raise ProcessingFailure("Missing 'directory' in payload")

    logger.info(
        "Cleaning temporary directory",
        extra={"job_id": context.job_id, "directory": directory}
    )

    await asyncio.sleep(SIMULATED_DURATION_SECONDS[JOB_TYPE_CLEANUP_TEMP])
