"""Clock and time zone helpers.

Instants are stored in UTC. Calendar arithmetic (working days, "today",
cron wall-clock times) happens in the timezone of the ``now`` value passed in,
which the system clock takes from ``settings.user.timezone``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import settings


def get_local_timezone() -> ZoneInfo:
    """Return the configured local timezone."""
    timezone_name = settings.user.timezone
    try:
        return ZoneInfo(timezone_name)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"Invalid timezone: {timezone_name}") from exc


def local_now() -> datetime:
    """Return the current time in the configured local timezone."""
    return datetime.now(get_local_timezone())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC; aware values pass through unchanged."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
