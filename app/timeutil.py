"""UTC helpers shared by models and services"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Treat naive datetimes as UTC.

    SQLite hands back naive values for DateTime(timezone=True) columns;
    PostgreSQL returns aware ones. Comparisons must never mix the two.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
