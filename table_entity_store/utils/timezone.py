"""
Timezone Utilities

Datetimes are stored as ISO-8601 strings in UTC and handed back to callers in
their local representation:

- write: naive datetimes are first given the configured default timezone,
  then converted to UTC
- read: the stored UTC value is converted to the configured user timezone, or
  to the process local timezone when none is configured
"""

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def to_utc(dt: datetime) -> datetime:
    """Convert datetime to UTC.

    Naive datetimes are assumed to already be in UTC.

    Examples:
        >>> dt = datetime(2024, 1, 1, 10, 0, tzinfo=ZoneInfo('America/New_York'))
        >>> to_utc(dt)  # -> 2024-01-01 15:00:00+00:00
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def ensure_timezone_aware(dt: datetime, assumed_tz: Optional[str] = "UTC") -> datetime:
    """Ensure datetime has timezone information.

    Args:
        dt: Datetime to make timezone-aware
        assumed_tz: Timezone to assume for naive datetimes (default: "UTC")

    Returns:
        Timezone-aware datetime, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is not None:
        return dt

    if assumed_tz == "UTC":
        return dt.replace(tzinfo=timezone.utc)
    return dt.replace(tzinfo=ZoneInfo(assumed_tz))


def to_user_timezone(dt: datetime, user_tz: Optional[str] = None) -> datetime:
    """Convert an aware datetime to the user's timezone.

    With no user timezone the process local timezone is used.
    """
    if dt is None:
        return None

    if user_tz is None:
        return dt.astimezone()
    return dt.astimezone(ZoneInfo(user_tz))


def format_for_storage(dt: datetime, default_tz: str = "UTC") -> str:
    """Render a datetime as the UTC ISO string persisted in the table."""
    return to_utc(ensure_timezone_aware(dt, default_tz)).isoformat()


def parse_from_storage(value: str, user_tz: Optional[str] = None) -> datetime:
    """Parse a stored ISO string and convert it to the user's timezone."""
    dt = datetime.fromisoformat(value.replace('Z', '+00:00'))
    return to_user_timezone(ensure_timezone_aware(dt), user_tz)
