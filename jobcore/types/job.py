"""
Job-related type definitions.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from jobcore.constants import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_PRIORITY,
    PRIORITY_MAX,
    PRIORITY_MIN,
    PRIORITY_SCORE_FACTOR,
    TERMINAL_STATUSES,
    JobStatus,
)


def compute_score(enqueued_at: datetime, priority: int) -> float:
    """
    Ordering key for pending jobs, lowest first.

    Higher priority always sorts ahead of lower priority; equal priority
    sorts by enqueue time.
    """
    return enqueued_at.timestamp() - priority * PRIORITY_SCORE_FACTOR


def encode_payload(payload: bytes | str) -> bytes:
    """Payloads are stored as bytes; text is UTF-8 encoded."""
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return bytes(payload)


class JobSpec(BaseModel):
    """
    A unit of work to submit.
    Used for single submissions and as a batch member.
    """

    job_type: str = Field(..., min_length=1, max_length=255)
    payload: bytes = b""
    priority: int = Field(default=DEFAULT_PRIORITY, ge=PRIORITY_MIN, le=PRIORITY_MAX)
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)

    @field_validator("payload", mode="before")
    @classmethod
    def _encode_text(cls, value: Any) -> Any:
        if isinstance(value, str):
            return encode_payload(value)
        return value


class JobView(BaseModel):
    """
    Snapshot of a job record.

    Returned by every store read and transition. Snapshots are immutable;
    the store replaces them on each change.
    """

    model_config = ConfigDict(frozen=True, ser_json_bytes="base64")

    id: UUID
    queue_name: str
    job_type: str
    payload: bytes
    priority: int
    status: JobStatus
    attempts: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    batch_id: UUID | None = None
    score: float
    enqueued_at: datetime
    run_at: datetime | None = None
    worker_id: str | None = None
    lease_expires_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_error: str | None = None
    result: Any = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def remaining_attempts(self) -> int:
        return max(0, self.max_attempts - self.attempts)


class JobResult(BaseModel):
    """
    Optional structured return value for handlers.

    A handler may return any JSON-serialisable value instead. Returning
    ``JobResult(success=False, ...)`` fails the attempt as a transient error.
    """

    success: bool
    output: Any = None
    error: str | None = None


@dataclass(frozen=True)
class JobContext:
    """
    Context passed to job handlers during execution.
    Contains job metadata; the payload is opaque to the queue.
    """

    job_id: UUID
    queue_name: str
    job_type: str
    payload: bytes
    attempt: int
    max_attempts: int
    worker_id: str
    batch_id: UUID | None = None
    deadline: datetime | None = None

    @property
    def is_last_attempt(self) -> bool:
        """Check if this is the last retry attempt."""
        return self.attempt >= self.max_attempts

    @property
    def remaining_attempts(self) -> int:
        """Get remaining retry attempts."""
        return max(0, self.max_attempts - self.attempt)
