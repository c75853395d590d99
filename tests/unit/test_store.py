"""
Contract tests run against every job store backend.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from jobcore.clock import ManualClock
from jobcore.constants import LEASE_EXPIRED_ERROR, JobStatus
from jobcore.exceptions import (
    BatchNotFoundError,
    DeadLetterNotFoundError,
    InvalidJobError,
    JobNotFoundError,
)
from jobcore.store import JobStore
from jobcore.types.job import JobSpec

WORKER = "test-worker"
LEASE = 30


def spec(priority: int = 5, max_attempts: int = 3, payload: bytes = b"data") -> JobSpec:
    return JobSpec(job_type="echo", payload=payload, priority=priority, max_attempts=max_attempts)


class TestEnqueueAndClaim:
    """Submission, ordering and claiming."""

    async def test_enqueue_creates_pending_job(self, store: JobStore, clock: ManualClock):
        """A new job is pending with no attempts."""
        job = await store.enqueue("default", spec(priority=7))

        fetched = await store.get_job(job.id)
        assert fetched.status == JobStatus.PENDING
        assert fetched.attempts == 0
        assert fetched.max_attempts == 3
        assert fetched.priority == 7
        assert fetched.payload == b"data"
        assert fetched.created_at == clock.now()
        assert fetched.started_at is None

    async def test_claims_follow_priority(self, store: JobStore):
        """Higher priority is claimed first regardless of submission order."""
        for priority in (1, 10, 5):
            await store.enqueue("default", spec(priority=priority))

        claimed = [await store.claim_next("default", WORKER, LEASE) for _ in range(3)]

        assert [job.priority for job in claimed] == [10, 5, 1]

    async def test_equal_priority_is_fifo(self, store: JobStore, clock: ManualClock):
        """Jobs of equal priority come out in submission order."""
        first = await store.enqueue("default", spec())
        second = await store.enqueue("default", spec())
        clock.advance(1)
        third = await store.enqueue("default", spec())

        claimed = [await store.claim_next("default", WORKER, LEASE) for _ in range(3)]

        assert [job.id for job in claimed] == [first.id, second.id, third.id]

    async def test_higher_priority_beats_age(self, store: JobStore, clock: ManualClock):
        """An old low-priority job still waits behind a fresh higher one."""
        old = await store.enqueue("default", spec(priority=4))
        clock.advance(30 * 24 * 3600)
        fresh = await store.enqueue("default", spec(priority=5))

        assert (await store.claim_next("default", WORKER, LEASE)).id == fresh.id
        assert (await store.claim_next("default", WORKER, LEASE)).id == old.id

    async def test_claim_marks_job_in_flight(self, store: JobStore, clock: ManualClock):
        """Claiming increments attempts and records the owner and lease."""
        job = await store.enqueue("default", spec())

        claimed = await store.claim_next("default", WORKER, LEASE)

        assert claimed.id == job.id
        assert claimed.status == JobStatus.PROCESSING
        assert claimed.attempts == 1
        assert claimed.worker_id == WORKER
        assert claimed.started_at == clock.now()
        assert claimed.lease_expires_at == clock.now() + timedelta(seconds=LEASE)

        stats = await store.stats()
        assert stats.depth("default").pending == 0
        assert stats.depth("default").processing == 1

    async def test_claim_empty_queue_returns_none(self, store: JobStore):
        """An empty queue yields None once the block timeout passes."""
        assert await store.claim_next("default", WORKER, LEASE, block_timeout=0.05) is None

    async def test_queues_are_independent(self, store: JobStore):
        """A claim only sees its own queue."""
        await store.enqueue("emails", spec(priority=10))

        assert await store.claim_next("reports", WORKER, LEASE) is None
        assert await store.claim_next("emails", WORKER, LEASE) is not None

    async def test_job_claimed_once(self, store: JobStore):
        """A claimed job is not handed out again."""
        await store.enqueue("default", spec())

        assert await store.claim_next("default", "worker-a", LEASE) is not None
        assert await store.claim_next("default", "worker-b", LEASE) is None


class TestOutcomes:
    """Completion, retry and dead-letter transitions."""

    async def test_mark_completed_is_idempotent(self, store: JobStore):
        """A repeated completion is a no-op and counts the batch once."""
        batch, _ = await store.create_batch("default", [spec()])
        job = await store.claim_next("default", WORKER, LEASE)

        assert await store.mark_completed(job.id, WORKER, job.attempts, {"ok": True}) is True
        assert await store.mark_completed(job.id, WORKER, job.attempts, {"ok": True}) is False

        done = await store.get_job(job.id)
        assert done.status == JobStatus.COMPLETED
        assert done.result == {"ok": True}
        assert done.worker_id is None
        assert done.completed_at is not None
        assert (await store.get_batch(batch.id)).completed == 1

    async def test_outcome_requires_owning_claim(self, store: JobStore):
        """Another worker or a stale attempt cannot resolve the claim."""
        await store.enqueue("default", spec())
        job = await store.claim_next("default", WORKER, LEASE)

        assert await store.mark_completed(job.id, "someone-else", job.attempts) is False
        assert await store.mark_completed(job.id, WORKER, job.attempts + 1) is False
        assert (await store.get_job(job.id)).status == JobStatus.PROCESSING

    async def test_schedule_retry_waits_for_run_at(self, store: JobStore, clock: ManualClock):
        """A retry is not claimable before its run_at."""
        await store.enqueue("default", spec(priority=5))
        job = await store.claim_next("default", WORKER, LEASE)
        run_at = clock.now() + timedelta(seconds=2)

        applied = await store.schedule_retry(
            job.id, WORKER, job.attempts, run_at=run_at, priority=6, error="boom"
        )
        assert applied is True

        parked = await store.get_job(job.id)
        assert parked.status == JobStatus.RETRY_SCHEDULED
        assert parked.run_at == run_at
        assert parked.priority == 6
        assert parked.last_error == "boom"
        assert (await store.stats()).depth("default").scheduled == 1

        clock.advance(1.9)
        assert await store.claim_next("default", WORKER, LEASE) is None

        clock.advance(0.1)
        again = await store.claim_next("default", WORKER, LEASE)
        assert again.id == job.id
        assert again.attempts == 2

    async def test_dead_letter_records_snapshot(self, store: JobStore, clock: ManualClock):
        """A dead-lettered job is failed and its snapshot is kept."""
        batch, _ = await store.create_batch("default", [spec(max_attempts=1)])
        job = await store.claim_next("default", WORKER, LEASE)

        entry = await store.dead_letter(job.id, WORKER, job.attempts, "broken")

        assert entry is not None
        assert entry.job_id == job.id
        assert entry.attempts == 1
        assert entry.error == "broken"
        assert entry.payload == b"data"
        assert entry.batch_id == batch.id
        assert entry.failed_at == clock.now()

        failed = await store.get_job(job.id)
        assert failed.status == JobStatus.FAILED
        assert failed.last_error == "broken"

        assert await store.dead_letter(job.id, WORKER, job.attempts, "again") is None
        assert [e.id for e in await store.list_dead_letters()] == [entry.id]
        assert (await store.get_dead_letter(entry.id)).job_id == job.id
        assert (await store.get_batch(batch.id)).failed == 1

    async def test_dead_letters_are_oldest_first(self, store: JobStore):
        """Entries are listed in the order jobs failed."""
        for payload in (b"a", b"b", b"c"):
            await store.enqueue("default", spec(payload=payload))
            job = await store.claim_next("default", WORKER, LEASE)
            await store.dead_letter(job.id, WORKER, job.attempts, "x")

        entries = await store.list_dead_letters(limit=2)
        assert [entry.payload for entry in entries] == [b"a", b"b"]
        assert await store.list_dead_letters(queue_name="other") == []


class TestBatches:
    """Batch counters."""

    async def test_create_batch(self, store: JobStore):
        """All members are pending and the counters start at zero."""
        batch, jobs = await store.create_batch("default", [spec() for _ in range(4)])

        assert batch.total == 4
        assert batch.pending == 4
        assert batch.done is False
        assert len(jobs) == 4
        assert all(job.batch_id == batch.id for job in jobs)
        assert (await store.stats()).depth("default").pending == 4

    async def test_empty_batch_rejected(self, store: JobStore):
        with pytest.raises(InvalidJobError):
            await store.create_batch("default", [])

    async def test_batch_completes_when_all_members_terminal(self, store: JobStore):
        """Completed plus failed reaching total marks the batch done."""
        batch, _ = await store.create_batch("default", [spec(max_attempts=1) for _ in range(3)])

        for index in range(3):
            job = await store.claim_next("default", WORKER, LEASE)
            if index == 0:
                await store.dead_letter(job.id, WORKER, job.attempts, "nope")
            else:
                await store.mark_completed(job.id, WORKER, job.attempts)

        progress = await store.get_batch(batch.id)
        assert (progress.completed, progress.failed, progress.total) == (2, 1, 3)
        assert progress.pending == 0
        assert progress.done is True


class TestLookups:
    """Reads and partial updates."""

    async def test_unknown_ids_raise(self, store: JobStore):
        with pytest.raises(JobNotFoundError):
            await store.get_job(uuid4())
        with pytest.raises(BatchNotFoundError):
            await store.get_batch(uuid4())
        with pytest.raises(DeadLetterNotFoundError):
            await store.get_dead_letter(uuid4())

    async def test_update_job_fields(self, store: JobStore):
        """Informational fields can be overwritten; last writer wins."""
        job = await store.enqueue("default", spec())

        await store.update_job(job.id, last_error="first")
        updated = await store.update_job(job.id, last_error="second", result={"n": 1})

        assert updated.last_error == "second"
        assert updated.result == {"n": 1}
        assert updated.status == JobStatus.PENDING

    async def test_update_job_rejects_ordering_fields(self, store: JobStore):
        """Status and priority only change through transitions."""
        job = await store.enqueue("default", spec())

        with pytest.raises(InvalidJobError):
            await store.update_job(job.id, status=JobStatus.COMPLETED)
        with pytest.raises(InvalidJobError):
            await store.update_job(job.id, priority=10)

    async def test_update_unknown_job(self, store: JobStore):
        with pytest.raises(JobNotFoundError):
            await store.update_job(uuid4(), last_error="x")


class TestReconciliation:
    """Lease expiry, retry promotion and purging."""

    async def test_expired_lease_is_requeued(self, store: JobStore, clock: ManualClock):
        """A claim whose lease lapsed goes back to pending."""
        await store.enqueue("default", spec())
        job = await store.claim_next("default", WORKER, LEASE)

        clock.advance(LEASE - 1)
        assert await store.requeue_expired() == (0, 0)

        clock.advance(2)
        assert await store.requeue_expired() == (1, 0)

        requeued = await store.get_job(job.id)
        assert requeued.status == JobStatus.PENDING
        assert requeued.worker_id is None
        assert requeued.last_error == LEASE_EXPIRED_ERROR

        reclaimed = await store.claim_next("default", "other-worker", LEASE)
        assert reclaimed.id == job.id
        assert reclaimed.attempts == 2

        # The original worker's late result is ignored
        assert await store.mark_completed(job.id, WORKER, job.attempts) is False

    async def test_expired_lease_without_attempts_is_dead_lettered(
        self, store: JobStore, clock: ManualClock
    ):
        """A lapsed claim on its last attempt fails into the dead letters."""
        batch, _ = await store.create_batch("default", [spec(max_attempts=1)])
        job = await store.claim_next("default", WORKER, LEASE)

        clock.advance(LEASE + 1)
        assert await store.requeue_expired() == (0, 1)

        assert (await store.get_job(job.id)).status == JobStatus.FAILED
        [entry] = await store.list_dead_letters()
        assert entry.job_id == job.id
        assert entry.error == LEASE_EXPIRED_ERROR
        assert (await store.get_batch(batch.id)).failed == 1

    async def test_extend_lease(self, store: JobStore, clock: ManualClock):
        """A heartbeat pushes the expiry out; only the owner may extend."""
        await store.enqueue("default", spec())
        job = await store.claim_next("default", WORKER, LEASE)

        clock.advance(LEASE - 5)
        assert await store.extend_lease(job.id, WORKER, LEASE) is True
        assert await store.extend_lease(job.id, "intruder", LEASE) is False

        clock.advance(10)
        assert await store.requeue_expired() == (0, 0)
        assert (await store.get_job(job.id)).status == JobStatus.PROCESSING

    async def test_lease_held_until_after_expiry_instant(
        self, store: JobStore, clock: ManualClock
    ):
        """A lease expiring exactly now is still held."""
        await store.enqueue("default", spec())
        await store.claim_next("default", WORKER, LEASE)

        clock.advance(LEASE)
        assert await store.requeue_expired() == (0, 0)

        clock.advance(1)
        assert await store.requeue_expired() == (1, 0)

    async def test_promote_due(self, store: JobStore, clock: ManualClock):
        """Due retries are promoted without a claim."""
        await store.enqueue("default", spec())
        job = await store.claim_next("default", WORKER, LEASE)
        await store.schedule_retry(
            job.id, WORKER, 1, run_at=clock.now() + timedelta(seconds=5), priority=5, error="e"
        )

        assert await store.promote_due() == 0
        clock.advance(5)
        assert await store.promote_due() == 1

        promoted = await store.get_job(job.id)
        assert promoted.status == JobStatus.PENDING
        assert promoted.enqueued_at == clock.now()

    async def test_purge_terminal(self, store: JobStore, clock: ManualClock):
        """Old terminal jobs are deleted; live jobs and dead letters stay."""
        await store.enqueue("default", spec())
        done = await store.claim_next("default", WORKER, LEASE)
        await store.mark_completed(done.id, WORKER, done.attempts)

        await store.enqueue("default", spec())
        dead = await store.claim_next("default", WORKER, LEASE)
        await store.dead_letter(dead.id, WORKER, dead.attempts, "x")

        clock.advance(100)
        live = await store.enqueue("default", spec())

        assert await store.purge_terminal(clock.now() - timedelta(seconds=200)) == 0
        assert await store.purge_terminal(clock.now() - timedelta(seconds=50)) == 2

        with pytest.raises(JobNotFoundError):
            await store.get_job(done.id)
        assert (await store.get_job(live.id)).status == JobStatus.PENDING
        assert len(await store.list_dead_letters()) == 1

    async def test_stats(self, store: JobStore, clock: ManualClock):
        """Per-queue depth and the dead-letter count."""
        for _ in range(3):
            await store.enqueue("a", spec())
        await store.enqueue("b", spec())

        claimed = await store.claim_next("a", WORKER, LEASE)
        await store.schedule_retry(
            claimed.id, WORKER, 1, run_at=clock.now() + timedelta(seconds=1), priority=5, error="e"
        )
        await store.claim_next("a", WORKER, LEASE)
        dead = await store.claim_next("b", WORKER, LEASE)
        await store.dead_letter(dead.id, WORKER, 1, "x")

        stats = await store.stats()
        assert stats.depth("a").pending == 1
        assert stats.depth("a").scheduled == 1
        assert stats.depth("a").processing == 1
        assert stats.depth("b").pending == 0
        assert stats.depth("b").processing == 0
        assert stats.dead_letter_count == 1
