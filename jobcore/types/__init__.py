"""
Type definitions for the job queue.
Contains value types shared by the stores, workers and the ops API.
"""

from jobcore.types.batch import BatchView, DeadLetterView
from jobcore.types.job import (
    JobContext,
    JobResult,
    JobSpec,
    JobView,
    compute_score,
    encode_payload,
)
from jobcore.types.metrics import QueueDepth, QueueStats

__all__ = [
    # Job types
    "JobSpec",
    "JobView",
    "JobResult",
    "JobContext",
    "compute_score",
    "encode_payload",
    # Batch and dead-letter types
    "BatchView",
    "DeadLetterView",
    # Metrics types
    "QueueDepth",
    "QueueStats",
]
