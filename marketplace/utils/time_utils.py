"""Date/time helpers shared by the scheduling services.

All stored booking dates and times are wall-clock UTC. SQLite hands back
naive datetimes while PostgreSQL returns aware ones, so every comparison
goes through ``ensure_utc``.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes, convert aware ones"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def combine_utc(day: date, at: time) -> datetime:
    return datetime.combine(day, at).replace(tzinfo=timezone.utc)


def add_minutes(at: time, minutes: int) -> time:
    """Add minutes to a time of day; callers guarantee the result stays on the same day"""
    return (datetime.combine(date.min, at) + timedelta(minutes=minutes)).time()


def minutes_between(start: time, end: time) -> int:
    delta = datetime.combine(date.min, end) - datetime.combine(date.min, start)
    return int(delta.total_seconds() // 60)


def day_of_week(day: date) -> int:
    """Day of week with 0 = Sunday ... 6 = Saturday"""
    return (day.weekday() + 1) % 7


def date_range(start: date, end: date):
    """Yield each calendar day in [start, end]"""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
