"""Date manipulation utilities"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

HISTORY_PERIODS: Dict[str, timedelta] = {
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
}

DEFAULT_HISTORY_PERIOD = "30d"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def period_start(period: str, now: Optional[datetime] = None) -> datetime:
    """Start of a named history window ending now"""
    return (now or utcnow()) - HISTORY_PERIODS[period]


def days_between(start: datetime, end: datetime) -> int:
    """Whole days elapsed from start to end"""
    return (ensure_utc(end) - ensure_utc(start)).days


def days_remaining(due: Optional[datetime], now: Optional[datetime] = None) -> Optional[int]:
    """Days until due, rounded up; negative once overdue"""
    if due is None:
        return None
    seconds = (ensure_utc(due) - (now or utcnow())).total_seconds()
    return -int(-seconds // 86_400)
