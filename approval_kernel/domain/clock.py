"""
Injectable time source for the workflow services.

SLA deadlines, ``was_overdue`` flags, response times and the month in a
request number all come from a ``Clock`` passed in by the caller; nothing
in the kernel reads the wall clock except ``SystemClock``.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

_DEFAULT_START = datetime(2025, 5, 1, 9, 0, 0, tzinfo=timezone.utc)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        raise ValueError("DeterministicClock requires a timezone-aware datetime")
    return moment.astimezone(timezone.utc)


class Clock(ABC):
    """Source of aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime: ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock for tests.

    ``now()`` keeps returning the same instant until it is moved with
    ``advance()`` or ``set_time()``.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = _as_utc(fixed_time or _DEFAULT_START)

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = _as_utc(time)

    def advance(self, seconds: float = 0, *, hours: float = 0) -> None:
        self._current += timedelta(seconds=seconds, hours=hours)
