"""
jobcore - asynchronous job-processing core.

A priority job queue drained by a pool of async workers, with retry/backoff,
dead-letter handling, batch completion tracking, and queue-depth metrics.
"""

__version__ = "1.0.0"
