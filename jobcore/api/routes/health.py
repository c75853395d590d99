"""
Health check routes.
"""

from datetime import UTC, datetime

from fastapi import APIRouter
from fastapi.responses import Response

from jobcore import __version__
from jobcore.api.dependencies import Exporter
from jobcore.exceptions import StoreUnavailableError
from jobcore.types.api import HealthResponse

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the API and the job store.",
)
async def health_check(exporter: Exporter) -> HealthResponse:
    """
    Perform a health check.

    Reads the queue counters as a store connectivity probe.

    Returns:
        HealthResponse with service status.
    """
    store_status = "healthy"
    try:
        await exporter.snapshot()
    except StoreUnavailableError:
        store_status = "unhealthy"

    return HealthResponse(
        status="healthy" if store_status == "healthy" else "degraded",
        version=__version__,
        store=store_status,
        timestamp=datetime.now(UTC),
    )


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the service is alive.",
)
async def liveness_check() -> dict:
    """
    Kubernetes liveness probe endpoint.

    Returns:
        Alive status.
    """
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics.",
)
async def metrics(exporter: Exporter) -> Response:
    """
    Expose Prometheus metrics.

    Queue depth gauges are refreshed from the store on each scrape.

    Returns:
        Prometheus-formatted metrics.
    """
    return Response(
        content=await exporter.render(),
        media_type=exporter.content_type,
    )
