"""
Time Provider Module

Every timestamp the service writes and every "today" / "this month" a report
filters on comes from an injected clock, so bookings and reports are
deterministic under test.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    """Anything that can tell the current, timezone-aware time"""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in the school's local timezone"""

    def __init__(self, tz_name: str = "Europe/Berlin"):
        self.tz = ZoneInfo(tz_name)

    def now(self) -> datetime:
        return datetime.now(self.tz)


class FixedClock:
    """
    Clock frozen at a given instant

    Naive datetimes are taken as UTC. ``advance`` moves the clock forward,
    which lets tests book several transactions with distinct timestamps.
    """

    def __init__(self, instant: datetime, tz_name: Optional[str] = None):
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        if tz_name:
            instant = instant.astimezone(ZoneInfo(tz_name))
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def advance(self, **delta) -> datetime:
        self._instant = self._instant + timedelta(**delta)
        return self._instant
