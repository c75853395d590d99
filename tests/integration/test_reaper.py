"""
Integration tests for the reaper.
"""

import asyncio
from datetime import timedelta

import pytest

from jobcore.clock import ManualClock
from jobcore.config import Settings
from jobcore.constants import LEASE_EXPIRED_ERROR, JobStatus
from jobcore.exceptions import JobNotFoundError, StoreUnavailableError
from jobcore.observability.metrics import MetricsCollector
from jobcore.reaper import Reaper, ReapReport
from jobcore.store import JobStore, MemoryJobStore
from jobcore.types.job import JobSpec


@pytest.fixture
def reaper_factory(test_settings: Settings, metrics: MetricsCollector):
    def build(store: JobStore, retention_seconds: float | None = None) -> Reaper:
        return Reaper(
            store,
            retention_seconds=retention_seconds,
            metrics=metrics,
            settings=test_settings,
        )

    return build


class TestReaperPass:
    """A single reaper pass against each store backend."""

    async def test_nothing_to_do(self, store: JobStore, reaper_factory):
        report = await reaper_factory(store).run_once()

        assert report == ReapReport()
        assert not report.changed

    async def test_requeues_expired_claim(
        self,
        store: JobStore,
        clock: ManualClock,
        reaper_factory,
    ):
        """A crashed worker's job goes back to pending for another attempt."""
        job = await store.enqueue("default", JobSpec(job_type="echo"))
        await store.claim_next("default", "crashed-worker", 30)

        reaper = reaper_factory(store)
        assert (await reaper.run_once()).requeued == 0

        clock.advance(31)
        report = await reaper.run_once()

        assert report.requeued == 1
        reclaimed = await store.get_job(job.id)
        assert reclaimed.status == JobStatus.PENDING
        assert reclaimed.attempts == 1
        assert reclaimed.worker_id is None
        assert reclaimed.last_error == LEASE_EXPIRED_ERROR

        again = await store.claim_next("default", "worker-2", 30)
        assert again.id == job.id
        assert again.attempts == 2

    async def test_dead_letters_expired_claim_without_attempts_left(
        self,
        store: JobStore,
        clock: ManualClock,
        reaper_factory,
    ):
        job = await store.enqueue("default", JobSpec(job_type="echo", max_attempts=1))
        await store.claim_next("default", "crashed-worker", 30)
        clock.advance(31)

        report = await reaper_factory(store).run_once()

        assert report.dead_lettered == 1
        assert (await store.get_job(job.id)).status == JobStatus.FAILED
        [entry] = await store.list_dead_letters()
        assert entry.job_id == job.id
        assert entry.error == LEASE_EXPIRED_ERROR

    async def test_promotes_due_retries(
        self,
        store: JobStore,
        clock: ManualClock,
        reaper_factory,
    ):
        job = await store.enqueue("default", JobSpec(job_type="echo"))
        await store.claim_next("default", "worker-1", 30)
        await store.schedule_retry(
            job.id,
            "worker-1",
            1,
            run_at=clock.now() + timedelta(seconds=10),
            priority=6,
            error="boom",
        )

        reaper = reaper_factory(store)
        assert (await reaper.run_once()).promoted == 0
        assert (await store.get_job(job.id)).status == JobStatus.RETRY_SCHEDULED

        clock.advance(11)
        assert (await reaper.run_once()).promoted == 1
        assert (await store.get_job(job.id)).status == JobStatus.PENDING

    async def test_purges_old_terminal_jobs(
        self,
        store: JobStore,
        clock: ManualClock,
        reaper_factory,
    ):
        """Completed jobs past the retention window are deleted."""
        done = await store.enqueue("default", JobSpec(job_type="echo"))
        await store.claim_next("default", "worker-1", 30)
        await store.mark_completed(done.id, "worker-1", 1, "ok")
        waiting = await store.enqueue("default", JobSpec(job_type="echo"))

        clock.advance(120)
        report = await reaper_factory(store, retention_seconds=60).run_once()

        assert report.purged == 1
        with pytest.raises(JobNotFoundError):
            await store.get_job(done.id)
        assert (await store.get_job(waiting.id)).status == JobStatus.PENDING


    async def test_zero_retention_is_not_the_default(
        self,
        memory_store: MemoryJobStore,
        clock: ManualClock,
        metrics: MetricsCollector,
        test_settings: Settings,
    ):
        """Explicit zero interval and retention override the settings."""
        reaper = Reaper(
            memory_store,
            interval_seconds=0,
            retention_seconds=0,
            metrics=metrics,
            settings=test_settings,
        )
        assert reaper.interval == 0
        assert reaper.retention == timedelta(0)

        done = await memory_store.enqueue("default", JobSpec(job_type="echo"))
        await memory_store.claim_next("default", "worker-1", 30)
        await memory_store.mark_completed(done.id, "worker-1", 1)
        clock.advance(1)

        assert (await reaper.run_once()).purged == 1


class TestReaperMetrics:
    """Metrics updated by a reaper pass."""

    async def test_refreshes_gauges_and_counts_reclaims(
        self,
        memory_store: MemoryJobStore,
        clock: ManualClock,
        metrics: MetricsCollector,
        reaper_factory,
    ):
        await memory_store.enqueue("default", JobSpec(job_type="echo"))
        await memory_store.enqueue("default", JobSpec(job_type="echo"))
        await memory_store.claim_next("default", "crashed-worker", 30)
        clock.advance(31)

        await reaper_factory(memory_store).run_once()

        registry = metrics._registry
        assert registry.get_sample_value("jobcore_queue_pending", {"queue": "default"}) == 2
        assert registry.get_sample_value("jobcore_queue_processing", {"queue": "default"}) == 0
        assert (
            registry.get_sample_value("jobcore_jobs_reaped_total", {"action": "requeued"})
            == 1
        )


class TestReaperLoop:
    """The periodic loop."""

    async def test_start_and_stop(
        self,
        memory_store: MemoryJobStore,
        clock: ManualClock,
        reaper_factory,
    ):
        job = await memory_store.enqueue("default", JobSpec(job_type="echo"))
        await memory_store.claim_next("default", "crashed-worker", 30)
        clock.advance(31)

        reaper = reaper_factory(memory_store)
        task = asyncio.create_task(reaper.start())

        async with asyncio.timeout(5):
            while (await memory_store.get_job(job.id)).status != JobStatus.PENDING:
                await asyncio.sleep(0.01)

        reaper.stop()
        await asyncio.wait_for(task, timeout=5)
        assert task.done()

    async def test_loop_survives_store_errors(
        self,
        clock: ManualClock,
        reaper_factory,
    ):
        """A failing pass is logged and the loop carries on."""
        store = FailingOnceStore(clock=clock)
        reaper = reaper_factory(store)
        task = asyncio.create_task(reaper.start())

        async with asyncio.timeout(5):
            while store.passes < 2:
                await asyncio.sleep(0.01)

        reaper.stop()
        await asyncio.wait_for(task, timeout=5)


class FailingOnceStore(MemoryJobStore):
    """Memory store whose first promote_due call fails."""

    def __init__(self, clock: ManualClock):
        super().__init__(clock=clock)
        self.passes = 0

    async def promote_due(self, queue_name: str | None = None) -> int:
        self.passes += 1
        if self.passes == 1:
            raise StoreUnavailableError("connection refused")
        return await super().promote_due(queue_name)
