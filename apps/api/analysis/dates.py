"""Timezone helpers for timestamps coming back from the database or the API."""

from datetime import datetime, timedelta, timezone
from typing import Optional


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps are stored as UTC; make them aware."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def within_days(value: Optional[datetime], days: int, now: Optional[datetime] = None) -> bool:
    published = as_utc(value)
    if published is None:
        return False
    reference = as_utc(now) or utc_now()
    return published >= reference - timedelta(days=days)
