"""
API response type definitions.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from jobcore.constants import JobStatus
from jobcore.types.batch import BatchView, DeadLetterView
from jobcore.types.job import JobView


class JobResponse(BaseModel):
    """Full job details response. The payload is base64 encoded."""

    model_config = ConfigDict(ser_json_bytes="base64")

    id: UUID
    queue_name: str
    job_type: str
    payload: bytes
    status: JobStatus
    priority: int
    attempts: int
    max_attempts: int
    batch_id: UUID | None
    worker_id: str | None
    lease_expires_at: datetime | None
    run_at: datetime | None
    enqueued_at: datetime
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    last_error: str | None
    result: Any = None

    @classmethod
    def from_view(cls, job: JobView) -> "JobResponse":
        return cls.model_validate(job.model_dump())


class BatchResponse(BaseModel):
    """Batch progress counters."""

    id: UUID
    queue_name: str
    total: int
    completed: int
    failed: int
    pending: int
    done: bool
    created_at: datetime

    @classmethod
    def from_view(cls, batch: BatchView) -> "BatchResponse":
        return cls.model_validate(batch.model_dump())


class DeadLetterResponse(BaseModel):
    """A dead-lettered job snapshot. The payload is base64 encoded."""

    model_config = ConfigDict(ser_json_bytes="base64")

    id: UUID
    job_id: UUID
    queue_name: str
    job_type: str
    payload: bytes
    priority: int
    attempts: int
    max_attempts: int
    batch_id: UUID | None
    error: str
    job_created_at: datetime
    job_started_at: datetime | None
    failed_at: datetime

    @classmethod
    def from_view(cls, entry: DeadLetterView) -> "DeadLetterResponse":
        return cls.model_validate(entry.model_dump())


class DeadLetterListResponse(BaseModel):
    """Dead-letter entries, oldest first."""

    entries: list[DeadLetterResponse]
    count: int


class ReplayResponse(BaseModel):
    """Response body after replaying a dead-letter entry."""

    dead_letter_id: UUID
    job_id: UUID
    message: str = "Dead letter replayed as a new job"


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    store: str
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: str | None = None

