"""Injected time source.

Everything that asks "what time is it" or "what day is it" goes through a
Clock so day boundaries can be simulated in tests. Instants are always
timezone-aware UTC; calendar days are taken in the configured zone.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    def now(self) -> datetime: ...

    def today(self) -> date: ...


class SystemClock:
    __slots__ = ("tz",)

    def __init__(self, tz: str = "UTC"):
        self.tz = ZoneInfo(tz)

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def today(self) -> date:
        return self.now().astimezone(self.tz).date()


class FixedClock:
    """Clock frozen at a given instant; ``advance`` moves it forward."""

    __slots__ = ("_now", "tz")

    def __init__(self, now: datetime, tz: str = "UTC"):
        self._now = as_utc(now)
        self.tz = ZoneInfo(tz)

    def now(self) -> datetime:
        return self._now

    def today(self) -> date:
        return self._now.astimezone(self.tz).date()

    def advance(self, **kwargs) -> None:
        self._now = self._now + timedelta(**kwargs)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC (SQLite drops tzinfo) and normalise aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
