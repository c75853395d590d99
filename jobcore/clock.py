"""
Time sources.

Everything that stamps or compares job times takes a Clock so retry backoff
and lease expiry can be tested without waiting on the wall clock.
"""

from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Source of timezone-aware UTC timestamps."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class ManualClock:
    """
    Clock that only moves when told to.

    Used by tests to step through backoff delays and lease expiry.
    """

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2024, 1, 1, tzinfo=UTC)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> datetime:
        """Move the clock forward and return the new time."""
        self._now += timedelta(seconds=seconds)
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from stores that drop tzinfo."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)
