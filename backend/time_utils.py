"""
Time utilities for the Task Tracker application.

This module provides a single source of truth for time operations,
so that token issuance, token validation and audit timestamps all read
the same clock.
"""

from datetime import date, datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Get current UTC time.
    Single source of truth for "now" throughout the application.

    Returns:
        timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


def to_epoch_seconds(moment: datetime) -> int:
    """
    Convert a datetime to whole seconds since the Unix epoch.

    Naive datetimes are treated as UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp())


def from_epoch_seconds(seconds: int) -> datetime:
    """Convert seconds since the Unix epoch to a timezone-aware UTC datetime."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def is_valid_date_range(start: Optional[date], end: Optional[date]) -> bool:
    """
    Check that a date range is ordered.

    Open-ended ranges (either bound missing) are always valid.
    """
    if start is None or end is None:
        return True
    return start <= end
