"""
Module: timestamps.py
Description: UTC timestamp helpers shared by storage and delivery.

DynamoDB range keys compare strings lexicographically, so every stored
timestamp goes through to_iso() to keep one fixed-width format.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """
    Serialize a datetime as fixed-width ISO 8601 in UTC.

    Naive datetimes are assumed to already be UTC.

    Example:
        >>> to_iso(datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc))
        '2024-01-15T10:30:00.000000+00:00'
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO 8601 string, returning None for missing values."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
