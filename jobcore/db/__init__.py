"""
Database module.
Contains database connection, models, and repository implementations.
"""

from jobcore.db.connection import (
    create_engine,
    create_schema,
    create_session_factory,
    create_test_engine,
    session_scope,
)
from jobcore.db.models import Base, Batch, DeadLetter, Job

__all__ = [
    "create_engine",
    "create_schema",
    "create_session_factory",
    "create_test_engine",
    "session_scope",
    "Base",
    "Batch",
    "DeadLetter",
    "Job",
]
