"""Calendar helpers shared by the contest rules."""

from datetime import date, datetime, time, timedelta, timezone
from typing import Callable
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Timestamps read back from SQLite are naive; they are stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_date(value: datetime) -> date:
    return as_utc(value).date()


def ymd(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def local_now(now: datetime, tz: ZoneInfo) -> datetime:
    return as_utc(now).astimezone(tz)


def start_of_day(day: date, tz: ZoneInfo) -> datetime:
    """Midnight opening ``day`` in ``tz``, expressed in UTC."""
    return datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)


def end_of_day(day: date, tz: ZoneInfo) -> datetime:
    """Midnight closing ``day`` in ``tz``, expressed in UTC."""
    return start_of_day(day + timedelta(days=1), tz)


def previous_utc_day(now: datetime) -> tuple[datetime, datetime]:
    """[yesterday 00:00Z, today 00:00Z)"""
    today = utc_date(now)
    end = datetime.combine(today, time.min, tzinfo=timezone.utc)
    return end - timedelta(days=1), end
