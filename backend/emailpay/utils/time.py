"""
UTC time helpers
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime"""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes.

    Some backends (SQLite) return naive datetimes for timezone-aware columns;
    everything stored by this service is UTC.
    """
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def start_of_utc_day(value: datetime) -> datetime:
    value = ensure_utc(value).astimezone(timezone.utc)
    return value.replace(hour=0, minute=0, second=0, microsecond=0)
