"""
Producer-facing job queue API.

Validates submissions, records metrics and spans, and delegates to the
configured job store.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any
from uuid import UUID

from pydantic import ValidationError

from jobcore.constants import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_PRIORITY,
    SPAN_ENQUEUE_JOB,
)
from jobcore.exceptions import InvalidJobError
from jobcore.observability.metrics import MetricsCollector, get_metrics
from jobcore.observability.tracing import get_tracer
from jobcore.store.base import JobStore
from jobcore.types.batch import BatchView, DeadLetterView
from jobcore.types.job import JobSpec, JobView

logger = logging.getLogger(__name__)


def _build_spec(value: JobSpec | Mapping[str, Any]) -> JobSpec:
    if isinstance(value, JobSpec):
        return value
    try:
        return JobSpec.model_validate(value)
    except ValidationError as e:
        raise InvalidJobError(str(e)) from e


class JobQueue:
    """
    Submit jobs and batches and inspect their state.

    Example:
        queue = JobQueue(store)
        job_id = await queue.enqueue("emails", "send_welcome", b'{"user": 42}', priority=8)
        job = await queue.get_job(job_id)
    """

    def __init__(self, store: JobStore, metrics: MetricsCollector | None = None):
        self.store = store
        self.metrics = metrics or get_metrics()

    async def enqueue(
        self,
        queue_name: str,
        job_type: str,
        payload: bytes | str = b"",
        priority: int = DEFAULT_PRIORITY,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> UUID:
        """
        Submit a single job.

        Args:
            queue_name: Queue to submit to.
            job_type: Handler dispatch key.
            payload: Opaque job data. Text is UTF-8 encoded.
            priority: 1 (lowest) to 10 (highest).
            max_attempts: Processing attempts before the job is dead-lettered.

        Returns:
            The new job's ID.

        Raises:
            InvalidJobError: If the priority, attempts or job type are invalid.
            StoreUnavailableError: If the store could not be reached.
        """
        spec = _build_spec(
            {
                "job_type": job_type,
                "payload": payload,
                "priority": priority,
                "max_attempts": max_attempts,
            }
        )
        _check_queue_name(queue_name)

        with get_tracer().start_as_current_span(SPAN_ENQUEUE_JOB) as span:
            span.set_attribute("queue", queue_name)
            span.set_attribute("job_type", job_type)
            span.set_attribute("priority", spec.priority)

            job = await self.store.enqueue(queue_name, spec)
            span.set_attribute("job_id", str(job.id))

        self.metrics.record_job_enqueued(queue_name)
        logger.info(
            "Job enqueued",
            extra={
                "job_id": str(job.id),
                "queue": queue_name,
                "job_type": job_type,
                "priority": spec.priority,
            },
        )
        return job.id

    async def enqueue_batch(
        self,
        queue_name: str,
        specs: Iterable[JobSpec | Mapping[str, Any]],
    ) -> tuple[UUID, list[UUID]]:
        """
        Submit a group of jobs tracked as one batch.

        The batch counters and all members are written atomically.

        Returns:
            The batch ID and the member job IDs, in submission order.

        Raises:
            InvalidJobError: If the batch is empty or a member is invalid.
        """
        job_specs = [_build_spec(spec) for spec in specs]
        if not job_specs:
            raise InvalidJobError("A batch needs at least one job")
        _check_queue_name(queue_name)

        with get_tracer().start_as_current_span(SPAN_ENQUEUE_JOB) as span:
            span.set_attribute("queue", queue_name)
            span.set_attribute("batch_size", len(job_specs))

            batch, jobs = await self.store.create_batch(queue_name, job_specs)
            span.set_attribute("batch_id", str(batch.id))

        self.metrics.record_job_enqueued(queue_name, count=len(jobs))
        return batch.id, [job.id for job in jobs]

    async def get_job(self, job_id: UUID) -> JobView:
        return await self.store.get_job(job_id)

    async def update_job(self, job_id: UUID, **fields: Any) -> JobView:
        """Partial update of a job's informational fields; the last writer wins."""
        return await self.store.update_job(job_id, **fields)

    async def get_batch(self, batch_id: UUID) -> BatchView:
        return await self.store.get_batch(batch_id)

    async def list_dead_letters(
        self,
        queue_name: str | None = None,
        limit: int = 50,
    ) -> list[DeadLetterView]:
        """Dead-letter entries, oldest first."""
        return await self.store.list_dead_letters(queue_name, limit)

    async def get_dead_letter(self, dead_letter_id: UUID) -> DeadLetterView:
        return await self.store.get_dead_letter(dead_letter_id)

    async def replay(self, dead_letter_id: UUID) -> UUID:
        """
        Resubmit a dead-lettered job as a brand-new job.

        The new job gets a fresh ID and a full set of attempts; the
        dead-letter entry is kept.

        Raises:
            DeadLetterNotFoundError: If the entry does not exist.
        """
        entry = await self.store.get_dead_letter(dead_letter_id)
        job_id = await self.enqueue(
            entry.queue_name,
            entry.job_type,
            entry.payload,
            priority=entry.priority,
            max_attempts=entry.max_attempts,
        )
        logger.info(
            "Dead letter replayed",
            extra={
                "dead_letter_id": str(dead_letter_id),
                "original_job_id": str(entry.job_id),
                "job_id": str(job_id),
            },
        )
        return job_id


def _check_queue_name(queue_name: str) -> None:
    if not queue_name or len(queue_name) > 255:
        raise InvalidJobError("Queue name must be 1-255 characters")
