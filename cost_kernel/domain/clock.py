"""
Clock -- injectable time source.

Services never call ``datetime.now()`` directly: submission, issuance,
rejection and void stamps all come from the ``Clock`` handed to the
service, so tests can pin them.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time, timezone-aware."""


class SystemClock(Clock):
    """Wall-clock UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock frozen at ``fixed_time`` until moved with ``advance()``.

    Naive datetimes are refused so every stamped value stays comparable
    with what the database returns.
    """

    def __init__(self, fixed_time: datetime | None = None):
        fixed_time = fixed_time or EPOCH
        if fixed_time.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware datetime")
        self._now = fixed_time

    def now(self) -> datetime:
        return self._now

    def advance(self, **delta: float) -> datetime:
        """Move forward by a ``timedelta(**delta)``; returns the new time."""
        self._now += timedelta(**delta)
        return self._now
