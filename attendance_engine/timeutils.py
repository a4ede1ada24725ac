from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return utc_now()

    # SQLite hands back naive values for timezone-aware columns.
    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


def utc_day_start(value: date | datetime) -> datetime:
    day_value = normalize_ts(value).date() if isinstance(value, datetime) else value
    return datetime.combine(day_value, time.min, tzinfo=timezone.utc)


def utc_day_end(value: date | datetime) -> datetime:
    day_value = normalize_ts(value).date() if isinstance(value, datetime) else value
    return datetime.combine(day_value, time(23, 59, 59, 999000), tzinfo=timezone.utc)


def parse_hhmm(value: str) -> int:
    """Return minutes since midnight for an ``HH:MM`` or ``HH:MM:SS`` string."""
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time format: {value!r}")
    hour = int(parts[0])
    minute = int(parts[1])
    if hour < 0 or hour > 23 or minute < 0 or minute > 59:
        raise ValueError(f"Invalid time format: {value!r}")
    return hour * 60 + minute


def minutes_of_day_utc(ts: datetime) -> int:
    normalized = normalize_ts(ts)
    return normalized.hour * 60 + normalized.minute


def days_between(start: datetime, end: datetime) -> float:
    return (normalize_ts(end) - normalize_ts(start)) / timedelta(days=1)
