"""Time zone helpers: UTC storage, local wall-clock scheduling."""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import settings


def get_local_timezone() -> ZoneInfo:
    """Return the configured scheduling timezone."""
    timezone_name = settings.user.timezone
    try:
        return ZoneInfo(timezone_name)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"Invalid timezone: {timezone_name}") from exc


def to_local(value: datetime) -> datetime:
    """Convert a datetime to the scheduling timezone; naive input is taken as local."""
    local_tz = get_local_timezone()
    if value.tzinfo is None:
        return value.replace(tzinfo=local_tz)
    return value.astimezone(local_tz)


def to_utc(value: datetime) -> datetime:
    """Convert administrator input to UTC, reading naive values as local time."""
    return to_local(value).astimezone(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return a UTC-aware datetime, treating naive values as stored UTC.

    Storage backends without timezone support (SQLite) hand back naive values
    that were written as UTC, so naive input is never shifted.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    """Return the current time in UTC."""
    return datetime.now(timezone.utc)
