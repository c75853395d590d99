"""
Pytest configuration and shared fixtures.
"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from prometheus_client import CollectorRegistry

from jobcore.api.main import create_app
from jobcore.clock import ManualClock
from jobcore.config import Settings
from jobcore.db.connection import create_test_engine
from jobcore.observability.metrics import MetricsCollector, QueueMetricsExporter
from jobcore.queue import JobQueue
from jobcore.store import JobStore, MemoryJobStore, SqlJobStore
from jobcore.worker.handlers import HandlerRegistry


async def make_sql_store(path: Path, clock: ManualClock) -> SqlJobStore:
    """SQLite-backed store with a fresh schema."""
    engine = create_test_engine(f"sqlite+aiosqlite:///{path}")
    store = SqlJobStore(engine, clock=clock, poll_interval=0.01)
    await store.create_schema()
    return store


@pytest.fixture
def clock() -> ManualClock:
    """A clock that only moves when a test advances it."""
    return ManualClock()


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        store_backend="memory",
        log_level="DEBUG",
        log_format="console",
        worker_poll_timeout_seconds=0.05,
        worker_lease_seconds=30,
        worker_heartbeat_interval_seconds=0.05,
        worker_shutdown_grace_seconds=5,
        worker_store_retry_attempts=5,
        worker_store_retry_base_seconds=0.01,
        reaper_interval_seconds=0.05,
    )


@pytest.fixture
def metrics() -> MetricsCollector:
    """Metrics collector on its own registry so tests do not collide."""
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def memory_store(clock: ManualClock) -> MemoryJobStore:
    return MemoryJobStore(clock=clock)


@pytest_asyncio.fixture
async def sql_store(tmp_path: Path, clock: ManualClock) -> AsyncGenerator[SqlJobStore]:
    """SQL store on a temporary SQLite database."""
    store = await make_sql_store(tmp_path / "jobs.db", clock)
    yield store
    await store.close()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def store(
    request: pytest.FixtureRequest,
    tmp_path: Path,
    clock: ManualClock,
) -> AsyncGenerator[JobStore]:
    """Each store backend in turn, for contract tests."""
    if request.param == "memory":
        yield MemoryJobStore(clock=clock)
        return

    sql = await make_sql_store(tmp_path / "contract.db", clock)
    yield sql
    await sql.close()


@pytest.fixture
def queue(memory_store: MemoryJobStore, metrics: MetricsCollector) -> JobQueue:
    return JobQueue(memory_store, metrics)


@pytest.fixture
def registry() -> HandlerRegistry:
    """An empty handler registry."""
    return HandlerRegistry()


@pytest.fixture
def app(queue: JobQueue, metrics: MetricsCollector, test_settings: Settings) -> FastAPI:
    """FastAPI app serving the in-memory queue."""
    exporter = QueueMetricsExporter(queue.store, metrics)
    return create_app(queue=queue, exporter=exporter, settings=test_settings)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
