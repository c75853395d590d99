"""
Retry scheduling for failed job attempts.

Decides between a delayed retry and the dead-letter store, and applies the
decision to the job store.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

from jobcore.clock import Clock
from jobcore.config import Settings, get_settings
from jobcore.constants import JobStatus
from jobcore.exceptions import HandlerError
from jobcore.store.base import JobStore, clamp_priority
from jobcore.types.job import JobView

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff with a priority nudge.

    The n-th retry waits ``base_delay * 2 ** (n - 1)`` seconds, capped at
    ``max_delay``, and runs at the job's priority plus ``priority_boost``
    (capped at PRIORITY_MAX) so retries are not starved by fresh work.
    """

    base_delay: float = 1.0
    max_delay: float = 3600.0
    priority_boost: int = 1

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            priority_boost=settings.retry_priority_boost,
        )

    def backoff(self, attempts: int) -> float:
        """Delay before the retry that follows attempt number ``attempts``."""
        exponent = max(attempts - 1, 0)
        # Past this the product leaves float range
        if exponent >= 64:
            return self.max_delay
        return min(self.base_delay * 2**exponent, self.max_delay)

    def next_priority(self, priority: int) -> int:
        return clamp_priority(priority + self.priority_boost)

    def should_retry(self, job: JobView, error: HandlerError) -> bool:
        return error.retryable and job.remaining_attempts > 0


class RetryScheduler:
    """
    Routes failed attempts to a delayed retry or the dead-letter store.

    Batch ``failed`` counters are bumped by the store only on the final
    failure, never on a retry.
    """

    def __init__(
        self,
        store: JobStore,
        policy: RetryPolicy | None = None,
        clock: Clock | None = None,
    ):
        self._store = store
        self.policy = policy or RetryPolicy.from_settings(get_settings())
        self._clock = clock or store.clock

    async def handle_failure(
        self,
        job: JobView,
        worker_id: str,
        error: HandlerError,
    ) -> JobStatus | None:
        """
        Apply the retry decision for a failed attempt.

        Args:
            job: The job as claimed (its ``attempts`` includes this attempt).
            worker_id: The worker that owns the claim.
            error: Why the attempt failed.

        Returns:
            RETRY_SCHEDULED or FAILED, or None if the claim was no longer
            owned (for example reclaimed by the reaper).
        """
        message = str(error) or type(error).__name__

        if self.policy.should_retry(job, error):
            delay = self.policy.backoff(job.attempts)
            run_at = self._clock.now() + timedelta(seconds=delay)
            priority = self.policy.next_priority(job.priority)

            applied = await self._store.schedule_retry(
                job.id,
                worker_id,
                job.attempts,
                run_at=run_at,
                priority=priority,
                error=message,
            )
            if not applied:
                return None

            logger.info(
                "Job queued for retry",
                extra={
                    "job_id": str(job.id),
                    "attempt": job.attempts,
                    "delay_seconds": delay,
                    "priority": priority,
                },
            )
            return JobStatus.RETRY_SCHEDULED

        entry = await self._store.dead_letter(job.id, worker_id, job.attempts, message)
        if entry is None:
            return None

        logger.warning(
            f"Job moved to dead letters after {job.attempts} attempts",
            extra={
                "job_id": str(job.id),
                "dead_letter_id": str(entry.id),
                "error": message,
                "retryable": error.retryable,
            },
        )
        return JobStatus.FAILED
