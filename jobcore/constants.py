"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING -> PROCESSING (claimed by a worker)
    - PROCESSING -> COMPLETED (handler succeeded)
    - PROCESSING -> RETRY_SCHEDULED (handler failed, attempts remain)
    - PROCESSING -> FAILED (attempts exhausted or permanent error)
    - RETRY_SCHEDULED -> PENDING (backoff delay elapsed)
    - PROCESSING -> PENDING (lease expired - crash recovery)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

# Priority bounds (higher = processed first)
PRIORITY_MIN = 1
PRIORITY_MAX = 10

# Seconds of queue age one priority step outweighs (~115 days)
PRIORITY_SCORE_FACTOR = 10_000_000

# Default values
DEFAULT_QUEUE = "default"
DEFAULT_PRIORITY = 5
DEFAULT_MAX_ATTEMPTS = 3

# API constants
API_V1_PREFIX = "/v1"

# Metrics names
METRIC_QUEUE_PENDING = "jobcore_queue_pending"
METRIC_QUEUE_SCHEDULED = "jobcore_queue_retry_scheduled"
METRIC_QUEUE_PROCESSING = "jobcore_queue_processing"
METRIC_DEAD_LETTERS = "jobcore_dead_letter_count"
METRIC_JOBS_ENQUEUED = "jobcore_jobs_enqueued_total"
METRIC_JOBS_CLAIMED = "jobcore_jobs_claimed_total"
METRIC_JOBS_FINISHED = "jobcore_jobs_finished_total"
METRIC_JOB_RETRIES = "jobcore_job_retries_total"
METRIC_JOB_DURATION = "jobcore_job_duration_seconds"
METRIC_JOBS_REAPED = "jobcore_jobs_reaped_total"

# Trace span names
SPAN_ENQUEUE_JOB = "enqueue_job"
SPAN_CLAIM_JOB = "claim_job"
SPAN_EXECUTE_JOB = "execute_job"

# Recorded as last_error when the reaper reclaims an abandoned claim
LEASE_EXPIRED_ERROR = "Lease expired before the job reached a terminal state"
