"""
Unit tests for the job repository and the SQL session boundary.
"""

from pathlib import Path

import pytest

from jobcore.clock import ManualClock
from jobcore.constants import PRIORITY_SCORE_FACTOR, JobStatus
from jobcore.db.connection import create_session_factory, create_test_engine, session_scope
from jobcore.db.repository import JobRepository
from jobcore.exceptions import StoreUnavailableError
from jobcore.store import SqlJobStore
from jobcore.types.job import JobSpec


class TestJobRepository:
    """Tests for JobRepository."""

    async def test_create_job_sets_score(self, sql_store: SqlJobStore, clock: ManualClock):
        """Score is the enqueue timestamp minus the priority weight."""
        async with session_scope(create_session_factory(sql_store.engine)) as session:
            job = await JobRepository(session, clock).create_job(
                "default", JobSpec(job_type="echo", priority=3)
            )

        assert job.status == JobStatus.PENDING
        assert job.seq is not None
        assert job.score == clock.now().timestamp() - 3 * PRIORITY_SCORE_FACTOR

    async def test_claim_skips_rows_taken_in_same_transaction(
        self,
        sql_store: SqlJobStore,
        clock: ManualClock,
    ):
        """The compare-and-set update never hands out a processing row."""
        async with session_scope(create_session_factory(sql_store.engine)) as session:
            repo = JobRepository(session, clock)
            first = await repo.create_job("default", JobSpec(job_type="echo"))
            second = await repo.create_job("default", JobSpec(job_type="echo"))

            claimed_a = await repo.claim_next("default", "worker-a", 30)
            claimed_b = await repo.claim_next("default", "worker-b", 30)
            claimed_c = await repo.claim_next("default", "worker-c", 30)

        assert claimed_a.id == first.id
        assert claimed_b.id == second.id
        assert claimed_c is None

    async def test_create_batch_writes_counters_and_members(
        self,
        sql_store: SqlJobStore,
        clock: ManualClock,
    ):
        """Batch row and members land in one transaction."""
        specs = [JobSpec(job_type="echo") for _ in range(3)]
        async with session_scope(create_session_factory(sql_store.engine)) as session:
            batch, jobs = await JobRepository(session, clock).create_batch("default", specs)

        assert batch.total == 3
        assert {job.batch_id for job in jobs} == {batch.id}

        progress = await sql_store.get_batch(batch.id)
        assert (progress.total, progress.completed, progress.failed) == (3, 0, 0)

    async def test_rollback_discards_batch(self, sql_store: SqlJobStore, clock: ManualClock):
        """An error inside the scope leaves no partial batch behind."""
        specs = [JobSpec(job_type="echo") for _ in range(2)]
        with pytest.raises(RuntimeError):
            async with session_scope(create_session_factory(sql_store.engine)) as session:
                await JobRepository(session, clock).create_batch("default", specs)
                raise RuntimeError("abort")

        stats = await sql_store.stats()
        assert stats.depth("default").pending == 0


class TestSessionScope:
    """Connection failures surface as StoreUnavailableError."""

    async def test_unreachable_database(self, tmp_path: Path, clock: ManualClock):
        engine = create_test_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'jobs.db'}")
        store = SqlJobStore(engine, clock=clock)

        with pytest.raises(StoreUnavailableError):
            await store.enqueue("default", JobSpec(job_type="echo"))

        await store.close()
