"""
Helpers for timestamps stored in the local database.

All persisted datetimes are naive UTC, since SQLite drops timezone
information on the way back out.
"""
from datetime import UTC, datetime
from typing import Optional


def utcnow() -> datetime:
    """
    Return the current time as a naive UTC datetime.

    Examples:
        >>> utcnow().tzinfo is None
        True
    """
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to naive UTC.

    Aware values are converted to UTC first; naive values are assumed to be
    UTC already and returned unchanged.

    Args:
        value: Datetime to normalize, or None

    Returns:
        Naive UTC datetime, or None when value is None

    Examples:
        >>> from datetime import timedelta, timezone
        >>> to_naive_utc(datetime(2024, 1, 1, 12, tzinfo=timezone(timedelta(hours=2))))
        datetime.datetime(2024, 1, 1, 10, 0)
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)
