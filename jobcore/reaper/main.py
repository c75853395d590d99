"""
Reaper for recovering stuck jobs.

The reaper runs periodically to promote due retries, reclaim jobs whose
lease expired (the worker crashed or was stopped past its grace period),
and purge old terminal jobs. Delivery is at-least-once: a reclaimed job runs
again, so handlers must be idempotent.
"""

import asyncio
import logging
import signal
from dataclasses import dataclass
from datetime import timedelta

from jobcore.config import Settings, get_settings
from jobcore.exceptions import StoreUnavailableError
from jobcore.observability.logging import bind_context, setup_logging
from jobcore.observability.metrics import (
    MetricsCollector,
    QueueMetricsExporter,
    get_metrics,
    setup_metrics,
)
from jobcore.store import create_store
from jobcore.store.base import JobStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReapReport:
    """What a single reaper pass changed."""

    promoted: int = 0
    requeued: int = 0
    dead_lettered: int = 0
    purged: int = 0

    @property
    def changed(self) -> bool:
        return any((self.promoted, self.requeued, self.dead_lettered, self.purged))


class Reaper:
    """
    Periodic reconciliation of the job store.

    Each pass:
    1. Promotes ``retry_scheduled`` jobs whose backoff has elapsed
    2. Returns expired claims to ``pending``, or dead-letters them when no
       attempts remain
    3. Deletes terminal jobs older than the retention window
    4. Refreshes the queue depth gauges
    """

    def __init__(
        self,
        store: JobStore,
        *,
        interval_seconds: float | None = None,
        retention_seconds: float | None = None,
        metrics: MetricsCollector | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            store: Job store to reconcile.
            interval_seconds: Seconds between reaper runs.
            retention_seconds: Age after which terminal jobs are purged.
            metrics: Metrics collector.
            settings: Application settings.
        """
        settings = settings or get_settings()
        self.interval = (
            interval_seconds if interval_seconds is not None else settings.reaper_interval_seconds
        )
        if retention_seconds is None:
            retention_seconds = settings.job_retention_seconds
        self.retention = timedelta(seconds=retention_seconds)

        self._store = store
        self._metrics = metrics or get_metrics()
        self._exporter = QueueMetricsExporter(store, self._metrics)
        self._stop = asyncio.Event()

    async def run_once(self) -> ReapReport:
        """
        Run the reaper once (for testing or cron-style execution).

        Returns:
            Counts of what changed.
        """
        promoted = await self._store.promote_due()
        requeued, dead_lettered = await self._store.requeue_expired()
        purged = await self._store.purge_terminal(self._store.clock.now() - self.retention)

        self._metrics.record_reaped(requeued, dead_lettered)
        await self._exporter.refresh()

        report = ReapReport(promoted, requeued, dead_lettered, purged)
        if report.changed:
            logger.info(
                "Reaper pass complete",
                extra={
                    "promoted": promoted,
                    "requeued": requeued,
                    "dead_lettered": dead_lettered,
                    "purged": purged,
                },
            )
        return report

    async def start(self) -> None:
        """Run the reaper loop until stopped."""
        logger.info(f"Reaper starting with interval {self.interval}s")
        self._stop.clear()

        while not self._stop.is_set():
            try:
                await self.run_once()
            except StoreUnavailableError as e:
                logger.warning(f"Store unavailable during reaper pass: {e}")
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except TimeoutError:
                pass

        logger.info("Reaper stopped")

    def stop(self) -> None:
        """Stop the reaper after the current pass."""
        logger.info("Reaper stopping")
        self._stop.set()


async def run_async() -> None:
    """Run the reaper asynchronously."""
    settings = get_settings()
    setup_logging(settings)
    bind_context(service="reaper")
    metrics = setup_metrics()

    store = create_store(settings)
    reaper = Reaper(store, metrics=metrics, settings=settings)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, reaper.stop)

    try:
        await reaper.start()
    finally:
        await store.close()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
