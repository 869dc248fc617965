from __future__ import annotations

from datetime import date, datetime, time, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.settings import get_settings


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)

    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


@lru_cache
def office_timezone() -> ZoneInfo:
    raw_name = (get_settings().office_timezone or "").strip() or "UTC"
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def local_date(ts_utc: datetime) -> date:
    return normalize_ts(ts_utc).astimezone(office_timezone()).date()


def local_to_utc(day: date, value: time) -> datetime:
    """Interpret an office-local wall-clock time on ``day`` as a UTC instant."""
    return datetime.combine(day, value, tzinfo=office_timezone()).astimezone(timezone.utc)


def minutes_between(start: datetime, end: datetime) -> int:
    return int((normalize_ts(end) - normalize_ts(start)).total_seconds() // 60)
