"""
Job workers: handler registry, retry scheduling, worker loop and pool.
"""

from jobcore.worker.handlers import HandlerRegistry, HandlerSpec, JobHandler, load_registry
from jobcore.worker.pool import WorkerPool
from jobcore.worker.retry import RetryPolicy, RetryScheduler
from jobcore.worker.worker import Worker

__all__ = [
    "HandlerRegistry",
    "HandlerSpec",
    "JobHandler",
    "RetryPolicy",
    "RetryScheduler",
    "Worker",
    "WorkerPool",
    "load_registry",
]
