"""
SQL-backed job store.

Each store operation runs in its own transaction through JobRepository.
PostgreSQL (asyncpg) is the production target; SQLite (aiosqlite) works for
single-process use and tests.
"""

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from jobcore.clock import Clock
from jobcore.config import Settings
from jobcore.db.connection import (
    create_engine,
    create_schema,
    create_session_factory,
    session_scope,
)
from jobcore.db.repository import JobRepository
from jobcore.exceptions import (
    BatchNotFoundError,
    DeadLetterNotFoundError,
    InvalidJobError,
    JobNotFoundError,
)
from jobcore.store.base import JobStore, check_update_fields
from jobcore.types.batch import BatchView, DeadLetterView
from jobcore.types.job import JobSpec, JobView
from jobcore.types.metrics import QueueStats

logger = logging.getLogger(__name__)


class SqlJobStore(JobStore):
    """
    Job store on a relational database.

    ``claim_next`` polls the database every ``poll_interval`` seconds while
    waiting out ``block_timeout``.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        clock: Clock | None = None,
        poll_interval: float = 0.2,
    ):
        super().__init__(clock)
        self._engine = engine
        self._sessions: async_sessionmaker[AsyncSession] = create_session_factory(engine)
        self.poll_interval = poll_interval

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock | None = None) -> "SqlJobStore":
        return cls(create_engine(settings), clock=clock)

    async def create_schema(self) -> None:
        await create_schema(self._engine)

    async def close(self) -> None:
        await self._engine.dispose()
        logger.info("Database connection closed")

    def _scope(self):
        return session_scope(self._sessions)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def enqueue(self, queue_name: str, spec: JobSpec) -> JobView:
        async with self._scope() as session:
            job = await JobRepository(session, self.clock).create_job(queue_name, spec)
            return job.to_view()

    async def create_batch(
        self,
        queue_name: str,
        specs: Sequence[JobSpec],
    ) -> tuple[BatchView, list[JobView]]:
        if not specs:
            raise InvalidJobError("A batch needs at least one job")

        async with self._scope() as session:
            batch, jobs = await JobRepository(session, self.clock).create_batch(
                queue_name, specs
            )
            return batch.to_view(), [job.to_view() for job in jobs]

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

        while True:
            async with self._scope() as session:
                job = await JobRepository(session, self.clock).claim_next(
                    queue_name, worker_id, lease_seconds
                )
                if job is not None:
                    return job.to_view()

            remaining = give_up_at - loop.time()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def extend_lease(self, job_id: UUID, worker_id: str, lease_seconds: float) -> bool:
        async with self._scope() as session:
            return await JobRepository(session, self.clock).extend_lease(
                job_id, worker_id, lease_seconds
            )

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    async def mark_completed(
        self,
        job_id: UUID,
        worker_id: str,
        attempt: int,
        result: Any = None,
    ) -> bool:
        async with self._scope() as session:
            job = await JobRepository(session, self.clock).complete_job(
                job_id, worker_id, attempt, result
            )
            return job is not None

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
        async with self._scope() as session:
            job = await JobRepository(session, self.clock).schedule_retry(
                job_id, worker_id, attempt, run_at, priority, error
            )
            return job is not None

    async def dead_letter(
        self,
        job_id: UUID,
        worker_id: str,
        attempt: int,
        error: str,
    ) -> DeadLetterView | None:
        async with self._scope() as session:
            entry = await JobRepository(session, self.clock).fail_job(
                job_id, worker_id, attempt, error
            )
            return entry.to_view() if entry is not None else None

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def promote_due(self, queue_name: str | None = None) -> int:
        async with self._scope() as session:
            return await JobRepository(session, self.clock).promote_due(queue_name)

    async def requeue_expired(self) -> tuple[int, int]:
        async with self._scope() as session:
            return await JobRepository(session, self.clock).requeue_expired()

    async def purge_terminal(self, older_than: datetime) -> int:
        async with self._scope() as session:
            return await JobRepository(session, self.clock).purge_terminal(older_than)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_job(self, job_id: UUID) -> JobView:
        async with self._scope() as session:
            job = await JobRepository(session, self.clock).get_job(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return job.to_view()

    async def update_job(self, job_id: UUID, **fields: Any) -> JobView:
        check_update_fields(fields)
        async with self._scope() as session:
            job = await JobRepository(session, self.clock).update_job(job_id, fields)
            if job is None:
                raise JobNotFoundError(job_id)
            return job.to_view()

    async def get_batch(self, batch_id: UUID) -> BatchView:
        async with self._scope() as session:
            batch = await JobRepository(session, self.clock).get_batch(batch_id)
            if batch is None:
                raise BatchNotFoundError(batch_id)
            return batch.to_view()

    async def list_dead_letters(
        self,
        queue_name: str | None = None,
        limit: int = 50,
    ) -> list[DeadLetterView]:
        async with self._scope() as session:
            entries = await JobRepository(session, self.clock).list_dead_letters(
                queue_name, limit
            )
            return [entry.to_view() for entry in entries]

    async def get_dead_letter(self, dead_letter_id: UUID) -> DeadLetterView:
        async with self._scope() as session:
            entry = await JobRepository(session, self.clock).get_dead_letter(dead_letter_id)
            if entry is None:
                raise DeadLetterNotFoundError(dead_letter_id)
            return entry.to_view()

    async def stats(self) -> QueueStats:
        async with self._scope() as session:
            return await JobRepository(session, self.clock).get_queue_stats()
