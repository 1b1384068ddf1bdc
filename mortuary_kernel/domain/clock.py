"""
Injectable time source.

Accrual, reconciliation and scheduling take a ``Clock`` instead of calling
``datetime.now()``, so a test can pin "now" and move it forward by hand.
All instants handed out are timezone-aware UTC.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


def as_utc(value: datetime) -> datetime:
    """Aware UTC datetime; naive input is taken to be UTC already.

    SQLite returns naive datetimes and PostgreSQL aware ones, so every
    comparison of stored instants goes through here.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clock(ABC):

    @abstractmethod
    def now_utc(self) -> datetime:
        ...


class SystemClock(Clock):

    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Frozen at ``start`` until ``advance()`` moves it."""

    def __init__(self, start: datetime | None = None):
        self._now = as_utc(start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc))

    def now_utc(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 1) -> datetime:
        self._now += timedelta(seconds=seconds)
        return self._now
