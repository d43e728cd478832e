"""
Time helpers shared by the ledger services.

All persisted timestamps are UTC. Calendar-day decisions (daily bonus)
use the configured business timezone.
"""

from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from backend.app.core.config import settings


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    SQLite hands back naive datetimes for DateTime(timezone=True) columns;
    those are stored as UTC, so they are tagged rather than converted.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_date(moment: datetime, tz_name: Optional[str] = None) -> date:
    """
    Calendar day of `moment` in the business timezone.

    Args:
        moment: Any datetime (naive values are treated as UTC)
        tz_name: IANA zone name, defaults to settings.bonus_timezone

    Returns:
        The local date on which `moment` falls
    """
    zone = ZoneInfo(tz_name or settings.bonus_timezone)
    return ensure_utc(moment).astimezone(zone).date()


def year_start(year: int) -> datetime:
    """First instant of a calendar year in UTC."""
    return datetime(year, 1, 1, tzinfo=timezone.utc)
