"""
Prometheus metrics collection.
"""

import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from jobcore.constants import (
    METRIC_DEAD_LETTERS,
    METRIC_JOB_DURATION,
    METRIC_JOB_RETRIES,
    METRIC_JOBS_CLAIMED,
    METRIC_JOBS_ENQUEUED,
    METRIC_JOBS_FINISHED,
    METRIC_JOBS_REAPED,
    METRIC_QUEUE_PENDING,
    METRIC_QUEUE_PROCESSING,
    METRIC_QUEUE_SCHEDULED,
)
from jobcore.store.base import JobStore
from jobcore.types.metrics import QueueStats

logger = logging.getLogger(__name__)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Queue depth (pending, scheduled retries, processing) per queue
    - Dead-letter size
    - Job submissions, claims, outcomes and retries
    - Handler execution duration
    - Jobs reclaimed by the reaper
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_pending = Gauge(
            METRIC_QUEUE_PENDING,
            "Number of jobs waiting to be claimed",
            ["queue"],
            registry=self._registry,
        )

        self.queue_scheduled = Gauge(
            METRIC_QUEUE_SCHEDULED,
            "Number of jobs waiting out a retry backoff",
            ["queue"],
            registry=self._registry,
        )

        self.queue_processing = Gauge(
            METRIC_QUEUE_PROCESSING,
            "Number of jobs currently claimed by a worker",
            ["queue"],
            registry=self._registry,
        )

        self.dead_letters = Gauge(
            METRIC_DEAD_LETTERS,
            "Number of entries in the dead-letter store",
            registry=self._registry,
        )

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs submitted",
            ["queue"],
            registry=self._registry,
        )

        self.jobs_claimed = Counter(
            METRIC_JOBS_CLAIMED,
            "Total number of job claims",
            ["queue"],
            registry=self._registry,
        )

        # outcome: completed, retry_scheduled, failed
        self.jobs_finished = Counter(
            METRIC_JOBS_FINISHED,
            "Total number of finished job attempts",
            ["queue", "outcome"],
            registry=self._registry,
        )

        self.job_retries = Counter(
            METRIC_JOB_RETRIES,
            "Total number of retries scheduled",
            ["queue"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job handler duration in seconds",
            ["queue", "outcome"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.jobs_reaped = Counter(
            METRIC_JOBS_REAPED,
            "Total number of expired claims reclaimed",
            ["action"],
            registry=self._registry,
        )

        self._known_queues: set[str] = set()

    def record_job_enqueued(self, queue: str, count: int = 1) -> None:
        """Record a job submission."""
        self.jobs_enqueued.labels(queue=queue).inc(count)

    def record_job_claimed(self, queue: str) -> None:
        self.jobs_claimed.labels(queue=queue).inc()

    def record_job_finished(
        self,
        queue: str,
        outcome: str,
        duration_seconds: float,
    ) -> None:
        """Record the end of a job attempt."""
        self.jobs_finished.labels(queue=queue, outcome=outcome).inc()
        self.job_duration.labels(queue=queue, outcome=outcome).observe(duration_seconds)

    def record_retry(self, queue: str) -> None:
        self.job_retries.labels(queue=queue).inc()

    def record_reaped(self, requeued: int, dead_lettered: int) -> None:
        if requeued:
            self.jobs_reaped.labels(action="requeued").inc(requeued)
        if dead_lettered:
            self.jobs_reaped.labels(action="dead_lettered").inc(dead_lettered)

    def update_queue_stats(self, stats: QueueStats) -> None:
        """
        Set the depth gauges from a stats snapshot.

        Queues seen before but missing from the snapshot are reset to zero.
        """
        for queue in self._known_queues - set(stats.queues):
            self.queue_pending.labels(queue=queue).set(0)
            self.queue_scheduled.labels(queue=queue).set(0)
            self.queue_processing.labels(queue=queue).set(0)

        for queue, depth in stats.queues.items():
            self.queue_pending.labels(queue=queue).set(depth.pending)
            self.queue_scheduled.labels(queue=queue).set(depth.scheduled)
            self.queue_processing.labels(queue=queue).set(depth.processing)

        self._known_queues |= set(stats.queues)
        self.dead_letters.set(stats.dead_letter_count)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


class QueueMetricsExporter:
    """
    Pull-based queue depth exporter.

    Reads the store's approximate counters on demand. Nothing here takes a
    lock that producers or workers wait on.
    """

    def __init__(self, store: JobStore, collector: MetricsCollector | None = None):
        self._store = store
        self._collector = collector or get_metrics()

    async def snapshot(self) -> QueueStats:
        """Current per-queue pending/processing counts and dead-letter size."""
        return await self._store.stats()

    async def refresh(self) -> QueueStats:
        """Take a snapshot and publish it to the Prometheus gauges."""
        stats = await self.snapshot()
        self._collector.update_queue_stats(stats)
        return stats

    async def render(self) -> bytes:
        """Refresh and render the registry in Prometheus text format."""
        await self.refresh()
        return self._collector.get_metrics()

    @property
    def content_type(self) -> str:
        return self._collector.get_content_type()


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
