"""
Attendance API — Clock
======================

What:  Time source for the attendance tracker.
How:   `SystemClock` returns aware datetimes in the server's operating
       timezone; `localize()` brings caller-supplied datetimes into that zone
       so "today" and "current hour" are always computed the same way.
"""

from datetime import datetime, tzinfo
from typing import Protocol

from attendance_api.config import settings


class Clock(Protocol):
    """Current-time source used by AttendanceTracker."""

    tz: tzinfo

    def now(self) -> datetime:
        ...

    def localize(self, value: datetime) -> datetime:
        ...


class SystemClock:
    """Wall clock in a fixed timezone."""

    def __init__(self, tz: tzinfo):
        self.tz = tz

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def localize(self, value: datetime) -> datetime:
        """
        Attach the clock's timezone to a naive datetime, or convert an aware
        one into it.
        """
        if value.tzinfo is None:
            return value.replace(tzinfo=self.tz)
        return value.astimezone(self.tz)


def get_clock() -> Clock:
    """FastAPI dependency returning the clock for the configured timezone."""
    return SystemClock(settings.tz)
