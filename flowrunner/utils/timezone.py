"""
Timezone utilities for consistent datetime handling.

All timestamps recorded by the engine are timezone-aware and expressed in the
local timezone.
"""

import os
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def get_local_timezone():
    """
    Get the local system timezone.

    Honours the TZ environment variable, falls back to UTC when the zone
    database has no entry for it.
    """
    tz_name = os.environ.get("TZ")
    if tz_name:
        try:
            return ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            pass
    return datetime.now().astimezone().tzinfo or timezone.utc


def get_local_now() -> datetime:
    """Current datetime in the local timezone."""
    return datetime.now(tz=get_local_timezone())


def to_local(dt: datetime) -> datetime:
    """
    Convert a datetime to the local timezone.

    Naive datetimes (as returned by SQLite) are assumed to be UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(get_local_timezone())
