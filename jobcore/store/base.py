"""
Storage contract for the job queue.

A store combines the priority queue, the job status table, the batch
counters and the dead-letter log. Every method is a single atomic operation
on the backing store; none of them runs handler code.
"""

import abc
from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

from jobcore.clock import Clock, SystemClock
from jobcore.constants import PRIORITY_MAX, PRIORITY_MIN
from jobcore.exceptions import InvalidJobError
from jobcore.types.batch import BatchView, DeadLetterView
from jobcore.types.job import JobSpec, JobView
from jobcore.types.metrics import QueueStats

# Fields update_job may touch. Status, attempts and ordering only change
# through the transition methods.
UPDATABLE_FIELDS = frozenset(
    {"last_error", "result", "started_at", "completed_at", "lease_expires_at"}
)


class JobStore(abc.ABC):
    """Abstract base for job stores."""

    def __init__(self, clock: Clock | None = None):
        self.clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def enqueue(self, queue_name: str, spec: JobSpec) -> JobView:
        """Insert a pending job and return it with its new id."""
        ...

    @abc.abstractmethod
    async def create_batch(
        self,
        queue_name: str,
        specs: Sequence[JobSpec],
    ) -> tuple[BatchView, list[JobView]]:
        """
        Create batch counters and enqueue every member job atomically.

        No member is claimable before the counters exist.
        """
        ...

    # ------------------------------------------------------------------
    # Claiming
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def claim_next(
        self,
        queue_name: str,
        worker_id: str,
        lease_seconds: float,
        block_timeout: float = 0.0,
    ) -> JobView | None:
        """
        Atomically claim the lowest-score pending job of a queue.

        The returned job is already ``processing`` with its attempt counter
        incremented. Returns None if nothing became available within
        ``block_timeout`` seconds.
        """
        ...

    @abc.abstractmethod
    async def extend_lease(self, job_id: UUID, worker_id: str, lease_seconds: float) -> bool:
        """Push back the lease of a job still claimed by ``worker_id``."""
        ...

    # ------------------------------------------------------------------
    # Outcomes. Each is conditional on (worker_id, attempt) still owning
    # the job, so re-delivering the same write is a no-op.
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def mark_completed(
        self,
        job_id: UUID,
        worker_id: str,
        attempt: int,
        result: Any = None,
    ) -> bool:
        """Complete a claimed job and bump its batch's completed counter."""
        ...

    @abc.abstractmethod
    async def schedule_retry(
        self,
        job_id: UUID,
        worker_id: str,
        attempt: int,
        *,
        run_at: datetime,
        priority: int,
        error: str,
    ) -> bool:
        """Move a claimed job to ``retry_scheduled`` until ``run_at``."""
        ...

    @abc.abstractmethod
    async def dead_letter(
        self,
        job_id: UUID,
        worker_id: str,
        attempt: int,
        error: str,
    ) -> DeadLetterView | None:
        """Fail a claimed job, append its dead-letter entry, bump batch failed."""
        ...

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def promote_due(self, queue_name: str | None = None) -> int:
        """Move ``retry_scheduled`` jobs whose ``run_at`` has passed to pending."""
        ...

    @abc.abstractmethod
    async def requeue_expired(self) -> tuple[int, int]:
        """
        Reclaim ``processing`` jobs whose lease has expired.

        Jobs with attempts left go back to pending; the rest are dead-lettered.
        Returns (requeued, dead_lettered).
        """
        ...

    @abc.abstractmethod
    async def purge_terminal(self, older_than: datetime) -> int:
        """Delete completed and failed jobs finished before ``older_than``."""
        ...

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def get_job(self, job_id: UUID) -> JobView:
        """Raises JobNotFoundError."""
        ...

    @abc.abstractmethod
    async def update_job(self, job_id: UUID, **fields: Any) -> JobView:
        """Last-writer-wins partial update of non-ordering fields."""
        ...

    @abc.abstractmethod
    async def get_batch(self, batch_id: UUID) -> BatchView:
        """Raises BatchNotFoundError."""
        ...

    @abc.abstractmethod
    async def list_dead_letters(
        self,
        queue_name: str | None = None,
        limit: int = 50,
    ) -> list[DeadLetterView]:
        """Oldest first."""
        ...

    @abc.abstractmethod
    async def get_dead_letter(self, dead_letter_id: UUID) -> DeadLetterView:
        """Raises DeadLetterNotFoundError."""
        ...

    @abc.abstractmethod
    async def stats(self) -> QueueStats:
        """Approximate per-queue depth and dead-letter size."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        return None


def check_update_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise InvalidJobError(f"Fields cannot be updated directly: {sorted(unknown)}")


def clamp_priority(priority: int) -> int:
    return max(PRIORITY_MIN, min(PRIORITY_MAX, priority))
