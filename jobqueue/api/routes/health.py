"""
Health check routes.
"""

import logging
from dataclasses import asdict
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue import __version__
from jobqueue.api.deps import EngineDep
from jobqueue.db import get_async_session
from jobqueue.engine.container import Engine
from jobqueue.types.api import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


async def _database_ok(session: AsyncSession) -> bool:
    try:
        await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError):
        logger.warning("Database health check failed", exc_info=True)
        return False
    return True


async def _queue_depths(engine: Engine) -> dict[str, dict[str, int]] | None:
    """Per-queue waiting/active/delayed counts, or None if the broker is unreachable."""
    depths = {}
    try:
        for config in engine.registry.queues:
            depths[config.name] = asdict(await engine.broker.counts(config.name))
    except Exception:
        logger.warning("Queue depth check failed", exc_info=True)
        return None
    return depths


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the API, the database and the queues.",
)
async def health_check(
    engine: EngineDep,
    session: AsyncSession = Depends(get_async_session),
) -> HealthResponse:
    """
    Perform a health check.

    Reports database connectivity and the depth of every configured queue.
    The service is "degraded" when either check fails.
    """
    db_ok = await _database_ok(session)
    queues = await _queue_depths(engine) if db_ok else None

    return HealthResponse(
        status="healthy" if db_ok and queues is not None else "degraded",
        version=__version__,
        database="healthy" if db_ok else "unhealthy",
        queues=queues or {},
        timestamp=datetime.now(timezone.utc),
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if the service is ready to receive traffic.",
)
async def readiness_check(
    session: AsyncSession = Depends(get_async_session),
) -> dict:
    """Kubernetes readiness endpoint."""
    return {"ready": await _database_ok(session)}


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the service is alive.",
)
async def liveness_check() -> dict:
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics.",
)
async def metrics(engine: EngineDep) -> Response:
    """
    Expose Prometheus metrics.

    Returns:
        Prometheus-formatted metrics.
    """
    return Response(
        content=engine.metrics.get_metrics(),
        media_type=engine.metrics.get_content_type(),
    )
