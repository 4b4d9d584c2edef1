"""Datetime helpers shared by aggregates and engines."""

from datetime import datetime, timedelta, timezone
from typing import Optional

ONE_DAY = timedelta(days=1)


def utcnow() -> datetime:
    """Current instant, timezone-aware (UTC)."""
    return datetime.now(timezone.utc)


def add_days(instant: datetime, days: int) -> datetime:
    return instant + timedelta(days=days)


def format_dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None
