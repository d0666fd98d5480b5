"""
Clock -- where payroll timestamps come from.

calculated_at, closed_at, generated_at and the ledger's created_at are all
taken from an injected Clock; this module is the only place that reads the
wall clock.  Stored timestamps are UTC.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        """Timezone-aware current time."""
        ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock:
    """
    A clock that only moves when told to.

    Starts at 09:00 UTC on the first of July 2025, the morning after the
    June payroll month ends, unless another start is given.
    """

    def __init__(self, start: datetime | None = None):
        if start is not None and start.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start")
        self._now = start or datetime(2025, 7, 1, 9, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float | timedelta = 1) -> datetime:
        """Move forward and return the new time."""
        step = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        if step < timedelta(0):
            raise ValueError("DeterministicClock cannot move backwards")
        self._now += step
        return self._now
