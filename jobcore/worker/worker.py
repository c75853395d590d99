"""
Worker loop for executing jobs.

A worker claims one job at a time from its queues, runs the registered
handler under the job type's deadline, and records the outcome. Failures
are routed through the retry scheduler.
"""

import asyncio
import json
import logging
import os
import time
from collections.abc import Awaitable, Callable, Sequence
from contextlib import suppress
from datetime import timedelta
from typing import Any, TypeVar

from jobcore.config import Settings, get_settings
from jobcore.constants import SPAN_CLAIM_JOB, SPAN_EXECUTE_JOB, JobStatus
from jobcore.exceptions import (
    DeadlineExceededError,
    HandlerError,
    PermanentHandlerError,
    StoreUnavailableError,
    TransientHandlerError,
    UnknownJobTypeError,
)
from jobcore.observability.logging import job_context
from jobcore.observability.metrics import MetricsCollector, get_metrics
from jobcore.observability.tracing import get_tracer
from jobcore.store.base import JobStore
from jobcore.types.job import JobContext, JobResult, JobView
from jobcore.worker.handlers import HandlerRegistry
from jobcore.worker.retry import RetryPolicy, RetryScheduler

logger = logging.getLogger(__name__)

T = TypeVar("T")


def default_worker_id() -> str:
    return f"{os.uname().nodename}-{os.getpid()}"


class Worker:
    """
    Job worker that claims and executes jobs.

    Features:
    - Bounded blocking claims so shutdown is noticed between polls
    - Per job type deadline enforced around the handler call
    - Heartbeat to extend the lease while a handler runs
    - Post-handler status writes retried while the store is unavailable
    """

    def __init__(
        self,
        store: JobStore,
        registry: HandlerRegistry,
        queue_names: Sequence[str],
        *,
        worker_id: str | None = None,
        retry_scheduler: RetryScheduler | None = None,
        settings: Settings | None = None,
        metrics: MetricsCollector | None = None,
        stop_event: asyncio.Event | None = None,
    ):
        """
        Initialize the worker.

        Args:
            store: Job store to claim from.
            registry: Handlers by job type.
            queue_names: Queues to serve, polled in order.
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            retry_scheduler: Failure routing. Built from settings if omitted.
            settings: Application settings.
            metrics: Metrics collector.
            stop_event: Set to stop claiming new jobs.
        """
        if not queue_names:
            raise ValueError("A worker needs at least one queue")

        settings = settings or get_settings()

        self.worker_id = worker_id or default_worker_id()
        self.queue_names = list(queue_names)
        self.poll_timeout = settings.worker_poll_timeout_seconds
        self.lease_seconds = settings.worker_lease_seconds
        self.heartbeat_interval = settings.worker_heartbeat_interval_seconds
        self.store_retry_attempts = settings.worker_store_retry_attempts
        self.store_retry_base = settings.worker_store_retry_base_seconds

        self._store = store
        self._registry = registry
        self._retry = retry_scheduler or RetryScheduler(
            store, RetryPolicy.from_settings(settings)
        )
        self._metrics = metrics or get_metrics()
        self._stop = stop_event or asyncio.Event()

        self.current_job: JobView | None = None
        self.processed = 0

    @property
    def busy(self) -> bool:
        return self.current_job is not None

    def stop(self) -> None:
        """Stop claiming new jobs. A job already claimed still runs."""
        self._stop.set()

    async def run(self) -> None:
        """Claim and process jobs until stopped."""
        logger.info(
            "Worker starting",
            extra={"worker_id": self.worker_id, "queues": self.queue_names},
        )

        while not self._stop.is_set():
            try:
                job = await self._claim()
            except StoreUnavailableError as e:
                logger.warning(
                    f"Store unavailable while claiming: {e}",
                    extra={"worker_id": self.worker_id},
                )
                await self._idle()
                continue
            except Exception as e:
                logger.exception(
                    f"Error in worker loop: {e}",
                    extra={"worker_id": self.worker_id},
                )
                await self._idle()
                continue

            if job is None:
                # Multi-queue claims do not block in the store
                if len(self.queue_names) > 1:
                    await self._idle()
                continue

            try:
                await self.process(job)
            except Exception as e:
                logger.exception(
                    f"Exception processing job: {e}",
                    extra={"worker_id": self.worker_id, "job_id": str(job.id)},
                )

        logger.info(
            "Worker stopped",
            extra={"worker_id": self.worker_id, "processed": self.processed},
        )

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self.poll_timeout)
        except TimeoutError:
            pass

    async def _claim(self) -> JobView | None:
        """
        Claim the next job from the worker's queues.

        A single queue is claimed with a blocking timeout. Several queues are
        tried in order without blocking, so none of them waits behind an
        idle one.
        """
        with get_tracer().start_as_current_span(SPAN_CLAIM_JOB) as span:
            span.set_attribute("worker_id", self.worker_id)

            block_timeout = self.poll_timeout if len(self.queue_names) == 1 else 0.0
            for queue_name in self.queue_names:
                job = await self._store.claim_next(
                    queue_name,
                    self.worker_id,
                    self.lease_seconds,
                    block_timeout=block_timeout,
                )
                if job is not None:
                    span.set_attribute("job_id", str(job.id))
                    span.set_attribute("queue", queue_name)
                    self._metrics.record_job_claimed(queue_name)
                    return job
        return None

    async def process(self, job: JobView) -> JobStatus | None:
        """
        Execute one claimed job and record its outcome.

        Args:
            job: The job as returned by ``claim_next``.

        Returns:
            The status the job moved to, or None if the outcome could not be
            recorded (claim lost or store unavailable). Such a job is left to
            the reaper.
        """
        self.current_job = job
        heartbeat = asyncio.create_task(self._heartbeat(job))
        started = time.monotonic()

        try:
            with job_context(
                job_id=str(job.id),
                job_type=job.job_type,
                queue=job.queue_name,
                attempt=job.attempts,
                worker_id=self.worker_id,
            ):
                logger.info("Executing job")

                error: HandlerError | None = None
                output: Any = None
                with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                    span.set_attribute("job_id", str(job.id))
                    span.set_attribute("job_type", job.job_type)
                    span.set_attribute("attempt", job.attempts)
                    try:
                        output = await self._invoke(job)
                    except HandlerError as e:
                        error = e
                        span.set_attribute("error", str(e))

                heartbeat.cancel()
                duration = time.monotonic() - started

                try:
                    if error is None:
                        status = await self._record_success(job, output)
                    else:
                        logger.warning(
                            f"Job attempt failed: {error}",
                            extra={"error_type": type(error).__name__},
                        )
                        status = await self._with_store_retry(
                            self._retry.handle_failure, job, self.worker_id, error
                        )
                except StoreUnavailableError as e:
                    logger.error(
                        f"Could not record job outcome, leaving it to the reaper: {e}"
                    )
                    return None
                except Exception as e:
                    logger.exception(f"Exception recording job outcome: {e}")
                    status = await self._fail_after_write_error(job, e)

                if status is None:
                    logger.warning("Claim lost before the outcome was recorded")
                    return None

                self.processed += 1
                self._metrics.record_job_finished(job.queue_name, status.value, duration)
                if status is JobStatus.RETRY_SCHEDULED:
                    self._metrics.record_retry(job.queue_name)
                return status
        finally:
            heartbeat.cancel()
            with suppress(asyncio.CancelledError):
                await heartbeat
            self.current_job = None

    async def _fail_after_write_error(
        self, job: JobView, exc: Exception
    ) -> JobStatus | None:
        """Best-effort dead-letter for an outcome the store refused to record."""
        error = PermanentHandlerError(f"Worker exception: {type(exc).__name__}: {exc}")
        try:
            return await self._retry.handle_failure(job, self.worker_id, error)
        except Exception:
            logger.exception("Failed to mark job as failed")
            return None

    async def _record_success(self, job: JobView, output: Any) -> JobStatus | None:
        applied = await self._with_store_retry(
            self._store.mark_completed, job.id, self.worker_id, job.attempts, output
        )
        if not applied:
            return None
        logger.info("Job completed successfully")
        return JobStatus.COMPLETED

    async def _invoke(self, job: JobView) -> Any:
        """
        Run the handler for a job under its deadline.

        Raises:
            HandlerError: Every way the attempt can fail. Exceptions that are
                not HandlerErrors are wrapped as transient.
        """
        spec = self._registry.get(job.job_type)
        if spec is None:
            raise UnknownJobTypeError(job.job_type)

        deadline = None
        if spec.timeout is not None:
            deadline = self._store.clock.now() + timedelta(seconds=spec.timeout)

        context = JobContext(
            job_id=job.id,
            queue_name=job.queue_name,
            job_type=job.job_type,
            payload=job.payload,
            attempt=job.attempts,
            max_attempts=job.max_attempts,
            worker_id=self.worker_id,
            batch_id=job.batch_id,
            deadline=deadline,
        )

        try:
            async with asyncio.timeout(spec.timeout) as cm:
                result = await spec.handler(context)
        except HandlerError:
            raise
        except TimeoutError as e:
            if cm.expired():
                raise DeadlineExceededError(job.job_type, spec.timeout) from e
            raise TransientHandlerError(f"TimeoutError: {e}") from e
        except Exception as e:
            raise TransientHandlerError(f"{type(e).__name__}: {e}") from e

        if isinstance(result, JobResult):
            if not result.success:
                raise TransientHandlerError(result.error or "Handler reported failure")
            result = result.output

        # Results are stored as JSON
        try:
            json.dumps(result)
        except (TypeError, ValueError) as e:
            raise PermanentHandlerError(f"Handler result is not JSON serializable: {e}") from e
        return result

    async def _with_store_retry(
        self,
        operation: Callable[..., Awaitable[T]],
        *args: Any,
    ) -> T:
        """
        Call a store write, retrying while the store is unavailable.

        The writes used here are conditional on the claim, so repeating one
        that already applied is harmless.
        """
        attempt = 1
        while True:
            try:
                return await operation(*args)
            except StoreUnavailableError:
                if attempt >= self.store_retry_attempts:
                    raise
                delay = self.store_retry_base * 2 ** (attempt - 1)
                logger.warning(
                    "Store unavailable, retrying status write",
                    extra={"attempt": attempt, "delay_seconds": delay},
                )
                await asyncio.sleep(delay)
                attempt += 1

    async def _heartbeat(self, job: JobView) -> None:
        """
        Periodically extend the lease on the running job.

        This prevents the job from being reclaimed by the reaper while the
        handler is still executing.
        """
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                extended = await self._store.extend_lease(
                    job.id, self.worker_id, self.lease_seconds
                )
            except StoreUnavailableError as e:
                logger.warning(f"Could not extend lease: {e}")
                continue
            except Exception as e:
                logger.exception(f"Error in heartbeat loop: {e}")
                continue

            if not extended:
                logger.warning("Lease no longer held, stopping heartbeat")
                return
            logger.debug("Extended lease", extra={"job_id": str(job.id)})
