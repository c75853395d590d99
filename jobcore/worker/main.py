"""
Worker process entry point.

Builds the store and handler registry from settings and runs a worker pool
until SIGTERM/SIGINT.
"""

import asyncio
import logging
import signal

from jobcore.config import get_settings
from jobcore.observability.logging import bind_context, setup_logging
from jobcore.observability.metrics import setup_metrics
from jobcore.observability.tracing import instrument_sqlalchemy, setup_tracing
from jobcore.store import SqlJobStore, create_store
from jobcore.worker.handlers import load_registry
from jobcore.worker.pool import WorkerPool

logger = logging.getLogger(__name__)

DEFAULT_HANDLERS = "jobcore.worker.builtin:registry"


async def run_async() -> None:
    """Run the worker pool asynchronously."""
    settings = get_settings()
    setup_logging(settings)
    bind_context(service="worker")
    setup_tracing(settings)
    metrics = setup_metrics()

    store = create_store(settings)
    if settings.otel_enabled and isinstance(store, SqlJobStore):
        instrument_sqlalchemy(store.engine.sync_engine)
    registry = load_registry(settings.worker_handlers or DEFAULT_HANDLERS)
    pool = WorkerPool(
        store,
        registry,
        settings.worker_queues,
        settings.worker_concurrency,
        settings=settings,
        metrics=metrics,
    )

    # Handle shutdown signals
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)

    await pool.start()
    try:
        await shutdown.wait()
    finally:
        await pool.stop(settings.worker_shutdown_grace_seconds)
        await store.close()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
