"""
Worker pool supervising a set of concurrent workers.
"""

import asyncio
import logging
from collections.abc import Sequence

from jobcore.config import Settings, get_settings
from jobcore.observability.metrics import MetricsCollector, get_metrics
from jobcore.store.base import JobStore
from jobcore.worker.handlers import HandlerRegistry
from jobcore.worker.retry import RetryPolicy, RetryScheduler
from jobcore.worker.worker import Worker, default_worker_id

logger = logging.getLogger(__name__)


class WorkerPool:
    """
    Runs ``concurrency`` workers against the same queues.

    The handler registry is frozen when the pool is built. ``stop`` stops
    new claims and waits for running handlers; handlers still running after
    the grace period are not killed, and their jobs stay ``processing``
    until they finish or the reaper reclaims the lease.

    Example:
        pool = WorkerPool(store, registry, ["emails"], concurrency=8)
        await pool.start()
        ...
        await pool.stop(grace_period=30)
    """

    def __init__(
        self,
        store: JobStore,
        registry: HandlerRegistry,
        queue_names: Sequence[str],
        concurrency: int | None = None,
        *,
        settings: Settings | None = None,
        retry_policy: RetryPolicy | None = None,
        metrics: MetricsCollector | None = None,
        name: str | None = None,
    ):
        settings = settings or get_settings()
        concurrency = concurrency if concurrency is not None else settings.worker_concurrency
        if concurrency < 1:
            raise ValueError("Pool concurrency must be at least 1")

        self.name = name or settings.worker_id or default_worker_id()
        self.queue_names = list(queue_names)
        self.concurrency = concurrency
        self.registry = registry.freeze()

        metrics = metrics or get_metrics()
        self._stop_event = asyncio.Event()
        retry = RetryScheduler(store, retry_policy or RetryPolicy.from_settings(settings))
        self.workers = [
            Worker(
                store,
                self.registry,
                self.queue_names,
                worker_id=f"{self.name}-{index}",
                retry_scheduler=retry,
                settings=settings,
                metrics=metrics,
                stop_event=self._stop_event,
            )
            for index in range(concurrency)
        ]
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    @property
    def in_flight(self) -> int:
        """Number of jobs currently being executed by this pool."""
        return sum(1 for worker in self.workers if worker.busy)

    async def start(self) -> None:
        """Spawn one task per worker."""
        if self._tasks:
            raise RuntimeError("Worker pool already started")

        logger.info(
            "Worker pool starting",
            extra={
                "pool": self.name,
                "queues": self.queue_names,
                "concurrency": self.concurrency,
                "job_types": self.registry.job_types(),
            },
        )
        self._tasks = [
            asyncio.create_task(worker.run(), name=worker.worker_id)
            for worker in self.workers
        ]

    async def stop(self, grace_period: float | None = None) -> None:
        """
        Stop claiming and wait for in-flight jobs.

        Args:
            grace_period: Seconds to wait for running handlers. Defaults to
                ``worker_shutdown_grace_seconds``.
        """
        if grace_period is None:
            grace_period = get_settings().worker_shutdown_grace_seconds

        logger.info(
            "Worker pool stopping",
            extra={"pool": self.name, "in_flight": self.in_flight},
        )
        self._stop_event.set()

        pending = [task for task in self._tasks if not task.done()]
        if pending:
            _, pending = await asyncio.wait(pending, timeout=grace_period)

        # Idle workers may still be blocked inside a claim
        tasks_by_name = {task.get_name(): task for task in pending}
        abandoned = []
        cancelled = []
        for worker in self.workers:
            task = tasks_by_name.get(worker.worker_id)
            if task is None:
                continue
            if worker.busy:
                abandoned.append(str(worker.current_job.id))
            else:
                task.cancel()
                cancelled.append(task)

        if abandoned:
            logger.warning(
                f"{len(abandoned)} jobs still running after grace period",
                extra={"pool": self.name, "job_ids": abandoned},
            )

        await asyncio.gather(*cancelled, return_exceptions=True)
        logger.info("Worker pool stopped", extra={"pool": self.name})

    async def join(self) -> None:
        """Wait for every worker task to exit."""
        await asyncio.gather(*self._tasks, return_exceptions=True)
