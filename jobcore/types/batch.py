"""
Batch and dead-letter type definitions.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, computed_field


class BatchView(BaseModel):
    """Aggregate counters for a set of jobs submitted together."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    queue_name: str
    total: int
    completed: int = 0
    failed: int = 0
    created_at: datetime

    @computed_field
    @property
    def pending(self) -> int:
        return self.total - self.completed - self.failed

    @computed_field
    @property
    def done(self) -> bool:
        return self.completed + self.failed >= self.total


class DeadLetterView(BaseModel):
    """
    Snapshot of a job at the moment it exhausted its retries.
    Dead-letter entries are append-only.
    """

    model_config = ConfigDict(frozen=True, ser_json_bytes="base64")

    id: UUID
    job_id: UUID
    queue_name: str
    job_type: str
    payload: bytes
    priority: int
    attempts: int
    max_attempts: int
    batch_id: UUID | None = None
    error: str
    job_created_at: datetime
    job_started_at: datetime | None = None
    failed_at: datetime
