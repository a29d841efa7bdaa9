"""Time helpers shared by the services.

Every service takes a ``clock`` callable so tests can pin "now".
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_time(now: datetime, tz_name: str) -> datetime:
    return ensure_utc(now).astimezone(ZoneInfo(tz_name))


def start_of_local_day(now: datetime, tz_name: str) -> datetime:
    """Midnight of the current day in ``tz_name``, expressed in UTC."""
    local = local_time(now, tz_name)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc)


def week_window_start(now: datetime) -> datetime:
    """Start of the rolling seven-day window used for weekly limits."""
    return ensure_utc(now) - timedelta(days=7)
