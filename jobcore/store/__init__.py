"""
Job store backends.
"""

from jobcore.clock import Clock
from jobcore.config import Settings, get_settings
from jobcore.store.base import JobStore
from jobcore.store.memory import MemoryJobStore
from jobcore.store.sql import SqlJobStore


def create_store(settings: Settings | None = None, clock: Clock | None = None) -> JobStore:
    """
    Build the store selected by ``settings.store_backend``.

    Args:
        settings: Application settings. Defaults to the cached settings.
        clock: Optional clock override.

    Returns:
        JobStore: A memory or SQL-backed store.
    """
    settings = settings or get_settings()
    if settings.store_backend == "memory":
        return MemoryJobStore(clock=clock)
    return SqlJobStore.from_settings(settings, clock=clock)


__all__ = ["JobStore", "MemoryJobStore", "SqlJobStore", "create_store"]
