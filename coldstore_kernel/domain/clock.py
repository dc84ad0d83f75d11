"""
Clock -- injectable time source.

Engine and service code never call ``datetime.now()`` directly: row
timestamps, GL posting times and the housekeeping retention cutoff all come
from the Clock handed to the service.

Architecture position:
    Kernel > Domain -- zero I/O except SystemClock.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """``now()`` returns a timezone-aware UTC datetime."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock frozen at 2025-01-01 12:00 UTC (or ``start``) until advanced.
    """

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance_days(self, days: int) -> None:
        self._now += timedelta(days=days)
