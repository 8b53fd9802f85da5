"""
Time helpers. All timestamps inside the core are naive UTC datetimes.
"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def hours_between(earlier: datetime, later: datetime) -> float:
    return (as_naive_utc(later) - as_naive_utc(earlier)).total_seconds() / 3600


def days_between(earlier: datetime, later: datetime) -> float:
    return hours_between(earlier, later) / 24
