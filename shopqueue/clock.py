"""Wall-clock sources for the booking engine."""

from __future__ import annotations

from datetime import datetime, timedelta, tzinfo
from typing import Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Current time in the shop's timezone."""

    def __init__(self, timezone: str | tzinfo = "Asia/Shanghai") -> None:
        self._tz = ZoneInfo(timezone) if isinstance(timezone, str) else timezone

    def now(self) -> datetime:
        return datetime.now(self._tz)


class FrozenClock:
    """A clock that only moves when told to. Used by tests and replay tooling."""

    def __init__(self, current: datetime) -> None:
        if current.tzinfo is None:
            raise ValueError("FrozenClock requires a timezone-aware datetime")
        self._current = current

    def now(self) -> datetime:
        return self._current

    def set(self, current: datetime) -> None:
        if current.tzinfo is None:
            current = current.replace(tzinfo=self._current.tzinfo)
        self._current = current

    def advance(self, **kwargs: float) -> datetime:
        self._current = self._current + timedelta(**kwargs)
        return self._current
