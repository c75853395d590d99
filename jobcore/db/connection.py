"""
Database connection management.
Handles async SQLAlchemy engine and session creation.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from jobcore.config import Settings, get_settings
from jobcore.db.models import Base
from jobcore.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

# Errors meaning the database could not be reached, as opposed to a bad query
UNAVAILABLE_ERRORS = (
    sa_exc.OperationalError,
    sa_exc.InterfaceError,
    sa_exc.TimeoutError,
    ConnectionError,
    OSError,
)


def create_engine(settings: Settings | None = None) -> AsyncEngine:
    """
    Create the async database engine.

    Args:
        settings: Settings to read the URL and pool sizes from.

    Returns:
        AsyncEngine: The SQLAlchemy async engine instance.
    """
    settings = settings or get_settings()
    if settings.database_url.startswith("sqlite"):
        return create_test_engine(settings.database_url)

    return create_async_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=settings.log_level == "DEBUG",
        pool_pre_ping=True,
    )


def create_test_engine(database_url: str) -> AsyncEngine:
    """
    Create an engine with NullPool.

    Used for SQLite and for tests, where pooled connections outlive the
    event loop that opened them.
    """
    return create_async_engine(
        database_url,
        poolclass=NullPool,
        echo=False,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to ``engine``."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """
    Create all tables.
    Production deployments use the Alembic migrations instead.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema created")


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """
    Transactional session scope.

    Commits on success and rolls back on error. Connection-level failures are
    re-raised as StoreUnavailableError so callers can tell an unreachable
    store apart from a missing record.

    Yields:
        AsyncSession: An async database session.
    """
    try:
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    except UNAVAILABLE_ERRORS as e:
        logger.warning("Job store unavailable", extra={"error": str(e)})
        raise StoreUnavailableError(str(e)) from e
