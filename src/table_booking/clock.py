"""Restaurant-local civil time.

Dates and times are handled as naive values in the restaurant's own
calendar. The host time zone never enters the arithmetic.
"""
from datetime import date, datetime, timedelta
from typing import Callable
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


def restaurant_clock(timezone_name: str) -> Clock:
    """Return a clock yielding the current naive wall-clock time at the restaurant."""
    tz = ZoneInfo(timezone_name)

    def now() -> datetime:
        return datetime.now(tz).replace(tzinfo=None)

    return now


def to_minutes(time_str: str) -> int:
    """'19:30' -> 1170"""
    hours, minutes = time_str.split(":")[:2]
    return int(hours) * 60 + int(minutes)


def from_minutes(total: int) -> str:
    return f"{total // 60:02d}:{total % 60:02d}"


def add_minutes(time_str: str, minutes: int) -> str:
    return from_minutes(to_minutes(time_str) + minutes)


def combine(day: date, time_str: str) -> datetime:
    """Literal wall-clock moment for a (date, "HH:MM") pair."""
    return datetime(day.year, day.month, day.day) + timedelta(minutes=to_minutes(time_str))


def hours_between(now: datetime, day: date, time_str: str) -> float:
    """Hours from ``now`` until the given slot; negative when it is in the past."""
    return (combine(day, time_str) - now).total_seconds() / 3600
