"""
Injected time source for token issue/expiry and step timestamps.

Nothing in the engines or services reads the wall clock directly: token
issue times, expiry checks, ``acted_at`` and reminder cut-offs all come from
a ``Clock`` passed in at construction.  ``SystemClock`` is the only place
real time enters.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

# 2024-01-01 12:00 UTC; the default instant for tests.
EPOCH_FOR_TESTS = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware UTC instants."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def now_millis(self) -> int:
        """Epoch milliseconds, the resolution tokens carry."""
        return int(self.now().timestamp() * 1000)


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Clock that only moves when told to.

    Used to step across token expiry and reminder thresholds without sleeping.
    """

    def __init__(self, start: datetime | None = None):
        self._current = start or EPOCH_FOR_TESTS

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def advance_hours(self, hours: int) -> None:
        self._current += timedelta(hours=hours)

    def advance_days(self, days: int) -> None:
        self._current += timedelta(days=days)
