"""
Dead-letter inspection and replay routes.
"""

from uuid import UUID

from fastapi import APIRouter, Query, status

from jobcore.api.dependencies import Queue
from jobcore.constants import API_V1_PREFIX
from jobcore.types.api import (
    DeadLetterListResponse,
    DeadLetterResponse,
    ErrorResponse,
    ReplayResponse,
)

router = APIRouter(prefix=f"{API_V1_PREFIX}/dead-letters", tags=["Dead letters"])


@router.get(
    "",
    response_model=DeadLetterListResponse,
    summary="List dead letters",
    description="List dead-lettered jobs, oldest first.",
)
async def list_dead_letters(
    queue: Queue,
    queue_name: str | None = Query(default=None, alias="queue"),
    limit: int = Query(default=50, ge=1, le=500),
) -> DeadLetterListResponse:
    entries = await queue.list_dead_letters(queue_name, limit)
    return DeadLetterListResponse(
        entries=[DeadLetterResponse.from_view(entry) for entry in entries],
        count=len(entries),
    )


@router.post(
    "/{dead_letter_id}/replay",
    response_model=ReplayResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}},
    summary="Replay a dead letter",
    description="Resubmit a dead-lettered job as a new job with a fresh ID.",
)
async def replay_dead_letter(dead_letter_id: UUID, queue: Queue) -> ReplayResponse:
    """
    Replay a dead-letter entry.

    The entry itself is kept; the new job starts with a full set of attempts.
    """
    job_id = await queue.replay(dead_letter_id)
    return ReplayResponse(dead_letter_id=dead_letter_id, job_id=job_id)
