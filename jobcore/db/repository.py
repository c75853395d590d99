"""
Job repository for database operations.
Implements the core data access patterns for job management.
"""

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobcore.clock import Clock
from jobcore.constants import LEASE_EXPIRED_ERROR, TERMINAL_STATUSES, JobStatus
from jobcore.db.models import Batch, DeadLetter, Job
from jobcore.types.job import JobSpec, compute_score
from jobcore.types.metrics import QueueDepth, QueueStats

logger = logging.getLogger(__name__)

# Pending rows inspected per claim attempt before giving up
CLAIM_CANDIDATES = 5


class JobRepository:
    """
    Repository for job database operations.

    Implements atomic operations for:
    - Job and batch submission
    - Claiming with FOR UPDATE SKIP LOCKED plus a compare-and-set update
    - Status transitions guarded by claim ownership
    - Lease expiry handling

    Every method runs inside the caller's transaction.
    """

    def __init__(self, session: AsyncSession, clock: Clock):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
            clock: Source of timestamps.
        """
        self._session = session
        self._clock = clock

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def create_job(
        self,
        queue_name: str,
        spec: JobSpec,
        batch_id: UUID | None = None,
    ) -> Job:
        """
        Insert a pending job.

        Args:
            queue_name: Queue the job belongs to.
            spec: Job type, payload, priority and attempt ceiling.
            batch_id: Optional batch the job belongs to.

        Returns:
            The new Job row.
        """
        now = self._clock.now()
        job = Job(
            id=uuid4(),
            queue_name=queue_name,
            job_type=spec.job_type,
            payload=spec.payload,
            priority=spec.priority,
            status=JobStatus.PENDING,
            score=compute_score(now, spec.priority),
            attempts=0,
            max_attempts=spec.max_attempts,
            batch_id=batch_id,
            enqueued_at=now,
            created_at=now,
            updated_at=now,
        )
        self._session.add(job)
        await self._session.flush()
        return job

    async def create_batch(
        self,
        queue_name: str,
        specs: Sequence[JobSpec],
    ) -> tuple[Batch, list[Job]]:
        """
        Insert the batch counters and then its member jobs.

        Both land in the caller's transaction, so members only become
        claimable once the counters are committed alongside them.
        """
        batch = Batch(
            id=uuid4(),
            queue_name=queue_name,
            total=len(specs),
            completed=0,
            failed=0,
            created_at=self._clock.now(),
        )
        self._session.add(batch)
        await self._session.flush()

        jobs = [await self.create_job(queue_name, spec, batch.id) for spec in specs]

        logger.info(
            "Created batch",
            extra={"batch_id": str(batch.id), "queue": queue_name, "total": len(jobs)},
        )
        return batch, jobs

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_job(self, job_id: UUID) -> Job | None:
        """
        Get a job by ID.

        Args:
            job_id: The job UUID.

        Returns:
            The Job or None if not found.
        """
        stmt = select(Job).where(Job.id == job_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def update_job(self, job_id: UUID, fields: dict[str, Any]) -> Job | None:
        """Partial update; the last writer wins."""
        stmt = (
            update(Job)
            .where(Job.id == job_id)
            .values(**fields, updated_at=self._clock.now())
            .returning(Job)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_batch(self, batch_id: UUID) -> Batch | None:
        stmt = select(Batch).where(Batch.id == batch_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_dead_letters(
        self,
        queue_name: str | None,
        limit: int,
    ) -> Sequence[DeadLetter]:
        stmt = select(DeadLetter).order_by(DeadLetter.seq.asc()).limit(limit)
        if queue_name is not None:
            stmt = stmt.where(DeadLetter.queue_name == queue_name)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def get_dead_letter(self, dead_letter_id: UUID) -> DeadLetter | None:
        stmt = select(DeadLetter).where(DeadLetter.id == dead_letter_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Claiming
    # ------------------------------------------------------------------

    async def claim_next(
        self,
        queue_name: str,
        worker_id: str,
        lease_seconds: float,
    ) -> Job | None:
        """
        Claim the lowest-score pending job of a queue.

        This is the critical path for job distribution. Candidate rows are
        locked with FOR UPDATE SKIP LOCKED so concurrent claimers spread over
        different rows; the UPDATE only applies while the row is still
        pending, so a row can never be claimed twice even on backends that
        ignore row locks.

        Args:
            queue_name: Queue to claim from.
            worker_id: The claiming worker.
            lease_seconds: Lease length before the reaper may reclaim.

        Returns:
            The claimed Job, or None if the queue had nothing claimable.
        """
        await self.promote_due(queue_name)

        now = self._clock.now()
        candidates_stmt = (
            select(Job.id)
            .where(
                and_(
                    Job.queue_name == queue_name,
                    Job.status == JobStatus.PENDING,
                )
            )
            .order_by(Job.score.asc(), Job.seq.asc())
            .limit(CLAIM_CANDIDATES)
            .with_for_update(skip_locked=True)
        )
        candidates = (await self._session.execute(candidates_stmt)).scalars().all()

        for job_id in candidates:
            stmt = (
                update(Job)
                .where(
                    and_(
                        Job.id == job_id,
                        Job.status == JobStatus.PENDING,
                    )
                )
                .values(
                    status=JobStatus.PROCESSING,
                    attempts=Job.attempts + 1,
                    worker_id=worker_id,
                    started_at=now,
                    lease_expires_at=now + timedelta(seconds=lease_seconds),
                    updated_at=now,
                )
                .returning(Job)
            )
            result = await self._session.execute(stmt)
            job = result.scalar_one_or_none()
            if job is not None:
                return job

        return None

    async def extend_lease(
        self,
        job_id: UUID,
        worker_id: str,
        lease_seconds: float,
    ) -> bool:
        """
        Extend the lease on a job (heartbeat).

        Returns:
            True if lease was extended, False otherwise.
        """
        now = self._clock.now()
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == job_id,
                    Job.worker_id == worker_id,
                    Job.status == JobStatus.PROCESSING,
                )
            )
            .values(
                lease_expires_at=now + timedelta(seconds=lease_seconds),
                updated_at=now,
            )
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _owned(self, job_id: UUID, worker_id: str, attempt: int):
        return and_(
            Job.id == job_id,
            Job.status == JobStatus.PROCESSING,
            Job.worker_id == worker_id,
            Job.attempts == attempt,
        )

    async def _increment_batch(self, batch_id: UUID | None, column: str) -> None:
        if batch_id is None:
            return
        counter = getattr(Batch, column)
        stmt = update(Batch).where(Batch.id == batch_id).values({column: counter + 1})
        await self._session.execute(stmt)

    async def complete_job(
        self,
        job_id: UUID,
        worker_id: str,
        attempt: int,
        result: Any = None,
    ) -> Job | None:
        """
        Mark job as successfully completed.

        Returns:
            Updated Job, or None if this claim no longer owns the job.
        """
        now = self._clock.now()
        stmt = (
            update(Job)
            .where(self._owned(job_id, worker_id, attempt))
            .values(
                status=JobStatus.COMPLETED,
                completed_at=now,
                updated_at=now,
                worker_id=None,
                lease_expires_at=None,
                result=result,
            )
            .returning(Job)
        )
        job = (await self._session.execute(stmt)).scalar_one_or_none()
        if job is not None:
            await self._increment_batch(job.batch_id, "completed")
        return job

    async def schedule_retry(
        self,
        job_id: UUID,
        worker_id: str,
        attempt: int,
        run_at: datetime,
        priority: int,
        error: str,
    ) -> Job | None:
        """Release the claim and park the job until ``run_at``."""
        stmt = (
            update(Job)
            .where(self._owned(job_id, worker_id, attempt))
            .values(
                status=JobStatus.RETRY_SCHEDULED,
                run_at=run_at,
                priority=priority,
                score=compute_score(run_at, priority),
                last_error=error,
                updated_at=self._clock.now(),
                worker_id=None,
                lease_expires_at=None,
            )
            .returning(Job)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def fail_job(
        self,
        job_id: UUID,
        worker_id: str,
        attempt: int,
        error: str,
    ) -> DeadLetter | None:
        """Fail a claimed job and append its dead-letter entry."""
        job = await self._fail(self._owned(job_id, worker_id, attempt), error)
        if job is None:
            return None
        return await self._write_dead_letter(job, error)

    async def _fail(self, condition, error: str) -> Job | None:
        now = self._clock.now()
        stmt = (
            update(Job)
            .where(condition)
            .values(
                status=JobStatus.FAILED,
                completed_at=now,
                updated_at=now,
                last_error=error,
                worker_id=None,
                lease_expires_at=None,
            )
            .returning(Job)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def _write_dead_letter(self, job: Job, error: str) -> DeadLetter:
        entry = DeadLetter.from_job(job, error, failed_at=self._clock.now())
        self._session.add(entry)
        await self._session.flush()
        await self._increment_batch(job.batch_id, "failed")
        return entry

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def promote_due(self, queue_name: str | None = None) -> int:
        """Flip due ``retry_scheduled`` rows back to pending."""
        now = self._clock.now()
        filters = [Job.status == JobStatus.RETRY_SCHEDULED, Job.run_at <= now]
        if queue_name is not None:
            filters.append(Job.queue_name == queue_name)

        stmt = (
            update(Job)
            .where(and_(*filters))
            .values(
                status=JobStatus.PENDING,
                enqueued_at=Job.run_at,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    async def requeue_expired(self) -> tuple[int, int]:
        """
        Recover jobs with expired leases.

        This is called by the reaper to handle worker crashes. Expired
        ``processing`` rows go back to pending with their original score, or
        to the dead letters if they have no attempts left.

        Returns:
            Tuple of (requeued, dead_lettered).
        """
        now = self._clock.now()
        stmt = (
            select(Job.id, Job.attempts, Job.max_attempts)
            .where(
                and_(
                    Job.status == JobStatus.PROCESSING,
                    Job.lease_expires_at < now,
                )
            )
            .order_by(Job.seq.asc())
            .with_for_update(skip_locked=True)
        )
        expired = (await self._session.execute(stmt)).all()

        requeued = 0
        dead_lettered = 0
        for job in expired:
            still_expired = and_(
                Job.id == job.id,
                Job.status == JobStatus.PROCESSING,
                Job.attempts == job.attempts,
                Job.lease_expires_at < now,
            )
            if job.attempts >= job.max_attempts:
                failed = await self._fail(still_expired, LEASE_EXPIRED_ERROR)
                if failed is not None:
                    await self._write_dead_letter(failed, LEASE_EXPIRED_ERROR)
                    dead_lettered += 1
                continue

            requeue = (
                update(Job)
                .where(still_expired)
                .values(
                    status=JobStatus.PENDING,
                    worker_id=None,
                    lease_expires_at=None,
                    last_error=LEASE_EXPIRED_ERROR,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            result = await self._session.execute(requeue)
            requeued += result.rowcount

        if requeued or dead_lettered:
            logger.info(
                "Recovered jobs with expired leases",
                extra={"requeued": requeued, "dead_lettered": dead_lettered},
            )
        return requeued, dead_lettered

    async def purge_terminal(self, older_than: datetime) -> int:
        stmt = (
            delete(Job)
            .where(
                and_(
                    Job.status.in_(list(TERMINAL_STATUSES)),
                    Job.completed_at < older_than,
                )
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def get_queue_stats(self) -> QueueStats:
        """
        Get per-queue depth and dead-letter size.

        Plain COUNT queries; no row locks are taken.
        """
        stmt = (
            select(Job.queue_name, Job.status, func.count())
            .where(
                Job.status.in_(
                    [JobStatus.PENDING, JobStatus.RETRY_SCHEDULED, JobStatus.PROCESSING]
                )
            )
            .group_by(Job.queue_name, Job.status)
        )
        rows = (await self._session.execute(stmt)).all()

        queues: dict[str, QueueDepth] = {}
        for queue_name, status, count in rows:
            depth = queues.setdefault(queue_name, QueueDepth())
            if status == JobStatus.PENDING:
                depth.pending = count
            elif status == JobStatus.RETRY_SCHEDULED:
                depth.scheduled = count
            else:
                depth.processing = count

        dead_letters = await self._session.execute(
            select(func.count()).select_from(DeadLetter)
        )
        return QueueStats(
            queues=dict(sorted(queues.items())),
            dead_letter_count=dead_letters.scalar() or 0,
        )
