"""
Time source for the lifecycle engine.

All timestamps are naive UTC, matching the TIMESTAMP columns.  Services take a
Clock so deadline arithmetic can be tested against a fixed instant; endpoints
get one through the get_clock() dependency.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...

    def today(self) -> date: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)

    def today(self) -> date:
        return self.now().date()


class FixedClock:
    """Manually advanced clock (tests, replays)."""

    def __init__(self, start: datetime):
        self._now = start

    def now(self) -> datetime:
        return self._now

    def today(self) -> date:
        return self._now.date()

    def set(self, value: datetime) -> None:
        self._now = value

    def advance(self, **delta: float) -> datetime:
        self._now = self._now + timedelta(**delta)
        return self._now


system_clock = SystemClock()


def get_clock() -> Clock:
    """FastAPI dependency — overridden in tests."""
    return system_clock
