"""
Injectable time sources. Day bucketing always goes through a clock so that
"today" can be pinned in tests.
"""

from datetime import date, datetime, timedelta, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo


def local_timezone() -> tzinfo:
    """Return the device-local timezone."""
    return datetime.now().astimezone().tzinfo


class Clock:
    """Base clock: a current instant plus the zone used for calendar days."""

    tz: tzinfo

    def now(self) -> datetime:
        raise NotImplementedError

    def day_of(self, instant: datetime) -> date:
        """Calendar day of an instant in this clock's zone; naive values are taken as local."""
        if instant.tzinfo is None:
            return instant.date()
        return instant.astimezone(self.tz).date()

    def today(self) -> date:
        return self.day_of(self.now())


class SystemClock(Clock):
    def __init__(self, tz: Optional[tzinfo] = None):
        self.tz = tz or local_timezone()

    @classmethod
    def from_name(cls, name: Optional[str]) -> "SystemClock":
        return cls(ZoneInfo(name) if name else None)

    def now(self) -> datetime:
        return datetime.now(self.tz)


class FixedClock(Clock):
    """A clock frozen at a given instant until advanced."""

    def __init__(self, now: datetime, tz: Optional[tzinfo] = None):
        if now.tzinfo is None:
            now = now.replace(tzinfo=tz or local_timezone())
        self.tz = tz or now.tzinfo
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta) -> datetime:
        self._now = self._now + delta
        return self._now
