"""
FastAPI application entry point.

The ops API is read-only apart from dead-letter replay: jobs are submitted
in-process through JobQueue.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from jobcore import __version__
from jobcore.api.routes import dead_letters_router, health_router, jobs_router
from jobcore.config import Settings, get_settings
from jobcore.exceptions import NotFoundError, StoreUnavailableError
from jobcore.observability.logging import setup_logging
from jobcore.observability.metrics import QueueMetricsExporter, setup_metrics
from jobcore.observability.tracing import (
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_tracing,
)
from jobcore.queue import JobQueue
from jobcore.store import SqlJobStore, create_store
from jobcore.types.api import ErrorResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Builds the store from settings unless the app was created with a queue.
    """
    settings: Settings = app.state.settings
    owns_store = getattr(app.state, "queue", None) is None

    # Startup
    setup_logging(settings)
    setup_tracing(settings)
    if owns_store:
        metrics = setup_metrics()
        store = create_store(settings)
        if settings.otel_enabled and isinstance(store, SqlJobStore):
            instrument_sqlalchemy(store.engine.sync_engine)
        app.state.queue = JobQueue(store, metrics)
        app.state.exporter = QueueMetricsExporter(store, metrics)

    logger.info("Application started")

    yield

    # Shutdown
    if owns_store:
        await app.state.queue.store.close()
    logger.info("Application shutdown")


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content=ErrorResponse(error=f"{exc.kind} not found", detail=str(exc)).model_dump(),
    )


async def store_unavailable_handler(
    request: Request, exc: StoreUnavailableError
) -> JSONResponse:
    logger.warning(f"Store unavailable: {exc}", extra={"path": request.url.path})
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=ErrorResponse(error="store unavailable", detail=str(exc)).model_dump(),
    )


def create_app(
    queue: JobQueue | None = None,
    exporter: QueueMetricsExporter | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        queue: Queue to serve. Built from settings at startup if omitted.
        exporter: Metrics exporter. Defaults to one over the queue's store.
        settings: Application settings.

    Returns:
        FastAPI: The configured application instance.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="jobcore ops API",
        description="Inspection and dead-letter replay for the jobcore job queue",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings
    if queue is not None:
        app.state.queue = queue
        app.state.exporter = exporter or QueueMetricsExporter(queue.store, queue.metrics)

    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(StoreUnavailableError, store_unavailable_handler)

    # Include routers
    app.include_router(health_router)
    app.include_router(jobs_router)
    app.include_router(dead_letters_router)

    # Instrument with OpenTelemetry
    if settings.otel_enabled:
        instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()

    uvicorn.run(
        create_app(settings=settings),
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
