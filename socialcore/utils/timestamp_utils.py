"""
Timestamp utilities for consistent time handling across the system.

Datetimes are stored naive in UTC (SQLite drops tzinfo); epoch values used for
recency comparisons are milliseconds.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_millis(value: Optional[datetime] = None) -> int:
    """Convert datetime to epoch milliseconds.

    Args:
        value: datetime (optional, uses current time if None)

    Returns:
        Milliseconds since the epoch
    """
    if value is None:
        value = utc_now()
    value = to_naive_utc(value)
    return int(value.replace(tzinfo=timezone.utc).timestamp() * 1000)


def from_millis(millis: int) -> datetime:
    """Convert epoch milliseconds to a naive UTC datetime."""
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).replace(tzinfo=None)


def add_minutes(value: datetime, minutes: float) -> datetime:
    return value + timedelta(minutes=minutes)
