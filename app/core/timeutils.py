# app/core/timeutils.py
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def as_utc(value: datetime) -> datetime:
    """
    Treat naive datetimes as UTC.

    Postgres returns aware timestamps; SQLite (tests, local runs) drops the
    tzinfo on the way back, so every comparison goes through here.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def local_date(value: datetime, tz_name: str) -> date:
    """Calendar day of a timestamp in the establishment's timezone."""
    return as_utc(value).astimezone(ZoneInfo(tz_name)).date()


def local_today(tz_name: str, now: datetime | None = None) -> date:
    return local_date(now or utcnow(), tz_name)
