"""Date manipulation utilities"""

from datetime import datetime, timezone
from dateutil.relativedelta import relativedelta

SECONDS_PER_DAY = 86_400


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_months(from_date: datetime, months: int) -> datetime:
    """Calendar-month addition, clamped to the end of shorter months"""
    return from_date + relativedelta(months=months)


def days_between(start: datetime, end: datetime) -> float:
    """Fractional days from start to end (negative if end is earlier)"""
    return (as_utc(end) - as_utc(start)).total_seconds() / SECONDS_PER_DAY
