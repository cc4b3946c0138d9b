"""Time Utilities for UTC management"""

from datetime import date, datetime, timezone
from typing import Optional


def get_utc_now() -> datetime:
    """
    Returns a naive UTC datetime.
    Matches the DB schema (TIMESTAMP WITHOUT TIME ZONE).
    Avoids 'datetime.utcnow()' deprecation warnings.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def resolve_now(now: Optional[datetime] = None) -> datetime:
    """Injected clock value, or the current UTC time when none is given"""
    return now if now is not None else get_utc_now()


def as_date(value: datetime | date) -> date:
    """Collapse a datetime to its calendar date; dates pass through"""
    if isinstance(value, datetime):
        return value.date()
    return value
