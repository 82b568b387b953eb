"""Time helpers.

All timestamps handled by the service are naive UTC datetimes, matching what
the database columns store.
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def start_of_month(moment: datetime) -> datetime:
    """First instant of the calendar month containing ``moment``."""
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
