"""
Exception hierarchy for the job queue.

Handler-facing errors decide how a failed attempt is routed by the retry
scheduler. Store and lookup errors surface to the caller of the operation.
"""

from uuid import UUID


class JobCoreError(Exception):
    """Base class for all job queue errors."""

    pass


class InvalidJobError(JobCoreError, ValueError):
    """A job or batch specification was rejected at submission."""

    pass


# ============================================================================
# Handler errors
# ============================================================================


class HandlerError(JobCoreError):
    """Base class for errors that end a single job attempt."""

    retryable = True


class TransientHandlerError(HandlerError):
    """The attempt failed but a later attempt may succeed."""

    pass


class PermanentHandlerError(HandlerError):
    """The handler signalled that retrying is pointless."""

    retryable = False


class DeadlineExceededError(TransientHandlerError):
    """The handler did not finish within its job type's deadline."""

    def __init__(self, job_type: str, timeout: float):
        self.job_type = job_type
        self.timeout = timeout
        super().__init__(f"Handler for {job_type!r} exceeded deadline of {timeout:g}s")


class UnknownJobTypeError(HandlerError):
    """No handler is registered for the job type."""

    retryable = False

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"No handler registered for job type: {job_type}")


# ============================================================================
# Store errors
# ============================================================================


class StoreUnavailableError(JobCoreError):
    """The backing store could not be reached. Retry the store operation."""

    pass


class NotFoundError(JobCoreError, LookupError):
    """A requested record does not exist."""

    kind = "record"

    def __init__(self, record_id: UUID | str):
        self.record_id = record_id
        super().__init__(f"{self.kind.capitalize()} not found: {record_id}")


class JobNotFoundError(NotFoundError):
    kind = "job"


class BatchNotFoundError(NotFoundError):
    kind = "batch"


class DeadLetterNotFoundError(NotFoundError):
    kind = "dead letter"
