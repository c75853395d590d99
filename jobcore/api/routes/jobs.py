"""
Job and batch inspection routes.
"""

from uuid import UUID

from fastapi import APIRouter

from jobcore.api.dependencies import Queue
from jobcore.constants import API_V1_PREFIX
from jobcore.types.api import BatchResponse, ErrorResponse, JobResponse

router = APIRouter(prefix=API_V1_PREFIX, tags=["Jobs"])


@router.get(
    "/jobs/{job_id}",
    response_model=JobResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get job details",
    description="Get detailed information about a specific job.",
)
async def get_job(job_id: UUID, queue: Queue) -> JobResponse:
    """
    Get job details by ID.

    Raises:
        JobNotFoundError: Rendered as 404.
    """
    return JobResponse.from_view(await queue.get_job(job_id))


@router.get(
    "/batches/{batch_id}",
    response_model=BatchResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get batch progress",
)
async def get_batch(batch_id: UUID, queue: Queue) -> BatchResponse:
    return BatchResponse.from_view(await queue.get_batch(batch_id))
