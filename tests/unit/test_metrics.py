"""
Unit tests for metrics collection and the queue depth exporter.
"""

from prometheus_client import CollectorRegistry

from jobcore.observability.metrics import MetricsCollector, QueueMetricsExporter
from jobcore.store import MemoryJobStore
from jobcore.types.job import JobSpec
from jobcore.types.metrics import QueueDepth, QueueStats


def sample(collector: MetricsCollector, name: str, **labels: str) -> float | None:
    return collector._registry.get_sample_value(name, labels)


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_counters(self, metrics: MetricsCollector):
        metrics.record_job_enqueued("emails", count=3)
        metrics.record_job_claimed("emails")
        metrics.record_job_finished("emails", "completed", 0.2)
        metrics.record_retry("emails")
        metrics.record_reaped(requeued=2, dead_lettered=0)

        assert sample(metrics, "jobcore_jobs_enqueued_total", queue="emails") == 3
        assert sample(metrics, "jobcore_jobs_claimed_total", queue="emails") == 1
        assert (
            sample(metrics, "jobcore_jobs_finished_total", queue="emails", outcome="completed")
            == 1
        )
        assert sample(metrics, "jobcore_job_retries_total", queue="emails") == 1
        assert sample(metrics, "jobcore_jobs_reaped_total", action="requeued") == 2
        assert sample(metrics, "jobcore_jobs_reaped_total", action="dead_lettered") is None
        assert (
            sample(
                metrics, "jobcore_job_duration_seconds_count", queue="emails", outcome="completed"
            )
            == 1
        )

    def test_update_queue_stats(self, metrics: MetricsCollector):
        metrics.update_queue_stats(
            QueueStats(
                queues={
                    "a": QueueDepth(pending=4, scheduled=1, processing=2),
                    "b": QueueDepth(pending=1),
                },
                dead_letter_count=3,
            )
        )

        assert sample(metrics, "jobcore_queue_pending", queue="a") == 4
        assert sample(metrics, "jobcore_queue_retry_scheduled", queue="a") == 1
        assert sample(metrics, "jobcore_queue_processing", queue="a") == 2
        assert sample(metrics, "jobcore_dead_letter_count") == 3

        metrics.update_queue_stats(QueueStats(queues={"a": QueueDepth(pending=1)}))

        assert sample(metrics, "jobcore_queue_pending", queue="a") == 1
        assert sample(metrics, "jobcore_queue_pending", queue="b") == 0
        assert sample(metrics, "jobcore_dead_letter_count") == 0

    def test_separate_registries(self):
        """Collectors on separate registries can coexist."""
        first = MetricsCollector(registry=CollectorRegistry())
        second = MetricsCollector(registry=CollectorRegistry())

        first.record_job_enqueued("q")

        assert sample(first, "jobcore_jobs_enqueued_total", queue="q") == 1
        assert sample(second, "jobcore_jobs_enqueued_total", queue="q") is None


class TestQueueMetricsExporter:
    """Tests for QueueMetricsExporter."""

    async def test_snapshot(self, memory_store: MemoryJobStore, metrics: MetricsCollector):
        exporter = QueueMetricsExporter(memory_store, metrics)
        for _ in range(2):
            await memory_store.enqueue("default", JobSpec(job_type="echo"))
        await memory_store.claim_next("default", "w", 30)

        stats = await exporter.snapshot()

        assert stats.depth("default") == QueueDepth(pending=1, scheduled=0, processing=1)
        assert stats.dead_letter_count == 0

    async def test_render(self, memory_store: MemoryJobStore, metrics: MetricsCollector):
        """Rendering refreshes the gauges before exposing them."""
        exporter = QueueMetricsExporter(memory_store, metrics)
        await memory_store.enqueue("default", JobSpec(job_type="echo"))

        body = (await exporter.render()).decode()

        assert 'jobcore_queue_pending{queue="default"} 1.0' in body
        assert exporter.content_type.startswith("text/plain")
