"""
FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from jobqueue import __version__
from jobqueue.api.routes import health_router, jobs_router
from jobqueue.config import get_settings
from jobqueue.db import close_db, init_db
from jobqueue.engine.container import Engine
from jobqueue.errors import EnqueueFailure, InvalidKey, NotFound, UnsupportedJobType
from jobqueue.observability.logging import setup_logging
from jobqueue.observability.metrics import setup_metrics
from jobqueue.observability.tracing import (
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_tracing,
)
from jobqueue.types.api import ErrorResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events. An engine injected through
    create_app() is used as-is and no database is opened.
    """
    if app.state.engine is not None:
        yield
        return

    # Startup
    setup_logging("api")
    setup_metrics()
    setup_tracing()
    db_engine = await init_db()
    instrument_sqlalchemy(db_engine)
    app.state.engine = Engine.from_settings()

    logger.info("Application started")

    yield

    # Shutdown
    await close_db()
    app.state.engine = None
    logger.info("Application shutdown")


def _error(status_code: int, message: str, detail=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message, detail=detail).model_dump(exclude_none=True),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map the error taxonomy onto HTTP responses."""

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid request", jsonable_encoder(exc.errors()))

    @app.exception_handler(ValidationError)
    async def payload_validation_handler(request: Request, exc: ValidationError):
        return _error(
            status.HTTP_400_BAD_REQUEST,
            "Invalid payload",
            exc.errors(include_url=False, include_context=False),
        )

    @app.exception_handler(InvalidKey)
    async def invalid_key_handler(request: Request, exc: InvalidKey):
        return _error(status.HTTP_400_BAD_REQUEST, str(exc), {"reason": exc.reason.value})

    @app.exception_handler(UnsupportedJobType)
    async def unsupported_type_handler(request: Request, exc: UnsupportedJobType):
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return _error(status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(EnqueueFailure)
    async def enqueue_failure_handler(request: Request, exc: EnqueueFailure):
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Queue unavailable", str(exc))


def create_app(engine: Engine | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        engine: Pre-built engine. When omitted it is built on startup.

    Returns:
        FastAPI: The configured application instance.
    """
    app = FastAPI(
        title="Job Queue API",
        description="Idempotent job lifecycle engine with PostgreSQL",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.engine = engine

    register_exception_handlers(app)

    # Include routers
    app.include_router(health_router)
    app.include_router(jobs_router)

    # Instrument with OpenTelemetry
    instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()

    uvicorn.run(
        "jobqueue.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    run()
