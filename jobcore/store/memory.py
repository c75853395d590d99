"""
In-process job store.

Keeps one heap of pending jobs and one heap of scheduled retries per queue,
guarded by a single asyncio lock. Suitable for a single process running both
producers and a worker pool, and for tests.
"""

import asyncio
import heapq
import itertools
import logging
from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from jobcore.clock import Clock
from jobcore.constants import LEASE_EXPIRED_ERROR, TERMINAL_STATUSES, JobStatus
from jobcore.exceptions import (
    BatchNotFoundError,
    DeadLetterNotFoundError,
    InvalidJobError,
    JobNotFoundError,
)
from jobcore.store.base import JobStore, check_update_fields
from jobcore.types.batch import BatchView, DeadLetterView
from jobcore.types.job import JobSpec, JobView, compute_score
from jobcore.types.metrics import QueueDepth, QueueStats

logger = logging.getLogger(__name__)


class MemoryJobStore(JobStore):
    """
    Job store held in process memory.

    Claims pop from the per-queue heap and add to the per-queue in-flight set
    under the same lock acquisition, so exactly one caller gets each job.
    Depth counters are plain container sizes and are read without the lock.
    """

    def __init__(self, clock: Clock | None = None):
        super().__init__(clock)
        self._lock = asyncio.Lock()
        self._available = asyncio.Condition(self._lock)
        self._seq = itertools.count()

        self._jobs: dict[UUID, JobView] = {}
        self._job_seq: dict[UUID, int] = {}
        self._pending: dict[str, list[tuple[float, int, UUID]]] = defaultdict(list)
        self._scheduled: dict[str, list[tuple[datetime, int, UUID]]] = defaultdict(list)
        self._in_flight: dict[str, set[UUID]] = defaultdict(set)
        self._batches: dict[UUID, BatchView] = {}
        self._dead_letters: list[DeadLetterView] = []
        self._dead_letter_index: dict[UUID, DeadLetterView] = {}

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def enqueue(self, queue_name: str, spec: JobSpec) -> JobView:
        async with self._available:
            job = self._insert_locked(queue_name, spec, batch_id=None)
            self._available.notify_all()
        return job

    async def create_batch(
        self,
        queue_name: str,
        specs: Sequence[JobSpec],
    ) -> tuple[BatchView, list[JobView]]:
        if not specs:
            raise InvalidJobError("A batch needs at least one job")

        async with self._available:
            batch = BatchView(
                id=uuid4(),
                queue_name=queue_name,
                total=len(specs),
                created_at=self.clock.now(),
            )
            self._batches[batch.id] = batch
            jobs = [
                self._insert_locked(queue_name, spec, batch_id=batch.id)
                for spec in specs
            ]
            self._available.notify_all()

        return batch, jobs

    def _insert_locked(
        self,
        queue_name: str,
        spec: JobSpec,
        batch_id: UUID | None,
    ) -> JobView:
        now = self.clock.now()
        job = JobView(
            id=uuid4(),
            queue_name=queue_name,
            job_type=spec.job_type,
            payload=spec.payload,
            priority=spec.priority,
            status=JobStatus.PENDING,
            max_attempts=spec.max_attempts,
            batch_id=batch_id,
            score=compute_score(now, spec.priority),
            enqueued_at=now,
            created_at=now,
            updated_at=now,
        )
        seq = next(self._seq)
        self._jobs[job.id] = job
        self._job_seq[job.id] = seq
        heapq.heappush(self._pending[queue_name], (job.score, seq, job.id))
        return job

    # ------------------------------------------------------------------
    # Claiming
    # ------------------------------------------------------------------

    async def claim_next(
        self,
        queue_name: str,
        worker_id: str,
        lease_seconds: float,
        block_timeout: float = 0.0,
    ) -> JobView | None:
        loop = asyncio.get_running_loop()
        give_up_at = loop.time() + block_timeout

        async with self._available:
            while True:
                self._promote_due_locked(queue_name)
                job = self._pop_locked(queue_name, worker_id, lease_seconds)
                if job is not None:
                    return job

                remaining = give_up_at - loop.time()
                if remaining <= 0:
                    return None
                try:
                    await asyncio.wait_for(self._available.wait(), remaining)
                except TimeoutError:
                    continue

    def _pop_locked(
        self,
        queue_name: str,
        worker_id: str,
        lease_seconds: float,
    ) -> JobView | None:
        heap = self._pending[queue_name]
        while heap:
            _, _, job_id = heapq.heappop(heap)
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PENDING:
                continue

            now = self.clock.now()
            claimed = job.model_copy(
                update={
                    "status": JobStatus.PROCESSING,
                    "attempts": job.attempts + 1,
                    "worker_id": worker_id,
                    "started_at": now,
                    "lease_expires_at": now + timedelta(seconds=lease_seconds),
                    "updated_at": now,
                }
            )
            self._jobs[job_id] = claimed
            self._in_flight[queue_name].add(job_id)
            return claimed
        return None

    async def extend_lease(self, job_id: UUID, worker_id: str, lease_seconds: float) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PROCESSING or job.worker_id != worker_id:
                return False
            now = self.clock.now()
            self._jobs[job_id] = job.model_copy(
                update={
                    "lease_expires_at": now + timedelta(seconds=lease_seconds),
                    "updated_at": now,
                }
            )
            return True

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _owned_locked(self, job_id: UUID, worker_id: str, attempt: int) -> JobView | None:
        job = self._jobs.get(job_id)
        if (
            job is None
            or job.status != JobStatus.PROCESSING
            or job.worker_id != worker_id
            or job.attempts != attempt
        ):
            return None
        return job

    def _release_locked(self, job: JobView, **changes: Any) -> JobView:
        self._in_flight[job.queue_name].discard(job.id)
        updated = job.model_copy(
            update={
                "worker_id": None,
                "lease_expires_at": None,
                "updated_at": self.clock.now(),
                **changes,
            }
        )
        self._jobs[job.id] = updated
        return updated

    def _bump_batch_locked(self, batch_id: UUID | None, field: str) -> None:
        if batch_id is None:
            return
        batch = self._batches.get(batch_id)
        if batch is None:
            return
        self._batches[batch_id] = batch.model_copy(
            update={field: getattr(batch, field) + 1}
        )

    async def mark_completed(
        self,
        job_id: UUID,
        worker_id: str,
        attempt: int,
        result: Any = None,
    ) -> bool:
        async with self._lock:
            job = self._owned_locked(job_id, worker_id, attempt)
            if job is None:
                return False
            self._release_locked(
                job,
                status=JobStatus.COMPLETED,
                completed_at=self.clock.now(),
                result=result,
            )
            self._bump_batch_locked(job.batch_id, "completed")
            return True

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
        async with self._lock:
            job = self._owned_locked(job_id, worker_id, attempt)
            if job is None:
                return False
            updated = self._release_locked(
                job,
                status=JobStatus.RETRY_SCHEDULED,
                run_at=run_at,
                priority=priority,
                score=compute_score(run_at, priority),
                last_error=error,
            )
            heapq.heappush(
                self._scheduled[job.queue_name],
                (run_at, self._job_seq[job_id], updated.id),
            )
            return True

    async def dead_letter(
        self,
        job_id: UUID,
        worker_id: str,
        attempt: int,
        error: str,
    ) -> DeadLetterView | None:
        async with self._lock:
            job = self._owned_locked(job_id, worker_id, attempt)
            if job is None:
                return None
            return self._dead_letter_locked(job, error)

    def _dead_letter_locked(self, job: JobView, error: str) -> DeadLetterView:
        now = self.clock.now()
        self._release_locked(
            job,
            status=JobStatus.FAILED,
            completed_at=now,
            last_error=error,
        )
        entry = DeadLetterView(
            id=uuid4(),
            job_id=job.id,
            queue_name=job.queue_name,
            job_type=job.job_type,
            payload=job.payload,
            priority=job.priority,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            batch_id=job.batch_id,
            error=error,
            job_created_at=job.created_at,
            job_started_at=job.started_at,
            failed_at=now,
        )
        self._dead_letters.append(entry)
        self._dead_letter_index[entry.id] = entry
        self._bump_batch_locked(job.batch_id, "failed")
        return entry

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def _promote_due_locked(self, queue_name: str) -> int:
        heap = self._scheduled[queue_name]
        now = self.clock.now()
        promoted = 0
        while heap and heap[0][0] <= now:
            run_at, seq, job_id = heapq.heappop(heap)
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.RETRY_SCHEDULED:
                continue
            pending = job.model_copy(
                update={
                    "status": JobStatus.PENDING,
                    "enqueued_at": run_at,
                    "updated_at": now,
                }
            )
            self._jobs[job_id] = pending
            heapq.heappush(self._pending[queue_name], (pending.score, seq, job_id))
            promoted += 1
        return promoted

    async def promote_due(self, queue_name: str | None = None) -> int:
        async with self._available:
            names = [queue_name] if queue_name else list(self._scheduled)
            promoted = sum(self._promote_due_locked(name) for name in names)
            if promoted:
                self._available.notify_all()
        return promoted

    async def requeue_expired(self) -> tuple[int, int]:
        requeued = 0
        dead_lettered = 0

        async with self._available:
            now = self.clock.now()
            for queue_name, in_flight in self._in_flight.items():
                for job_id in list(in_flight):
                    job = self._jobs[job_id]
                    if job.lease_expires_at is None or job.lease_expires_at >= now:
                        continue

                    if job.attempts >= job.max_attempts:
                        self._dead_letter_locked(job, LEASE_EXPIRED_ERROR)
                        dead_lettered += 1
                        continue

                    pending = self._release_locked(
                        job,
                        status=JobStatus.PENDING,
                        last_error=LEASE_EXPIRED_ERROR,
                    )
                    heapq.heappush(
                        self._pending[queue_name],
                        (pending.score, self._job_seq[job_id], job_id),
                    )
                    requeued += 1

            if requeued:
                self._available.notify_all()

        if requeued or dead_lettered:
            logger.info(
                "Reclaimed jobs with expired leases",
                extra={"requeued": requeued, "dead_lettered": dead_lettered},
            )
        return requeued, dead_lettered

    async def purge_terminal(self, older_than: datetime) -> int:
        async with self._lock:
            expired = [
                job_id
                for job_id, job in self._jobs.items()
                if job.status in TERMINAL_STATUSES
                and job.completed_at is not None
                and job.completed_at < older_than
            ]
            for job_id in expired:
                del self._jobs[job_id]
                del self._job_seq[job_id]
        return len(expired)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_job(self, job_id: UUID) -> JobView:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def update_job(self, job_id: UUID, **fields: Any) -> JobView:
        check_update_fields(fields)
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            updated = job.model_copy(update={**fields, "updated_at": self.clock.now()})
            self._jobs[job_id] = updated
            return updated

    async def get_batch(self, batch_id: UUID) -> BatchView:
        batch = self._batches.get(batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)
        return batch

    async def list_dead_letters(
        self,
        queue_name: str | None = None,
        limit: int = 50,
    ) -> list[DeadLetterView]:
        entries = (
            entry
            for entry in self._dead_letters
            if queue_name is None or entry.queue_name == queue_name
        )
        return list(itertools.islice(entries, limit))

    async def get_dead_letter(self, dead_letter_id: UUID) -> DeadLetterView:
        entry = self._dead_letter_index.get(dead_letter_id)
        if entry is None:
            raise DeadLetterNotFoundError(dead_letter_id)
        return entry

    async def stats(self) -> QueueStats:
        names = set(self._pending) | set(self._scheduled) | set(self._in_flight)
        return QueueStats(
            queues={
                name: QueueDepth(
                    pending=len(self._pending.get(name, ())),
                    scheduled=len(self._scheduled.get(name, ())),
                    processing=len(self._in_flight.get(name, ())),
                )
                for name in sorted(names)
            },
            dead_letter_count=len(self._dead_letters),
        )
