"""Date helpers shared by the engine.

All timestamps are stored as naive UTC.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def previous_month(as_of: datetime) -> Tuple[datetime, datetime]:
    """Return [start, end) of the calendar month before ``as_of``."""
    this_month = as_of.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    last_day_prev = this_month - timedelta(days=1)
    return last_day_prev.replace(day=1), this_month


def days_between(start: datetime, end: datetime) -> int:
    return max(0, (end - start).days)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are taken as UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
