"""Time utilities with restaurant local time."""

import os
from datetime import datetime
from zoneinfo import ZoneInfo

try:
    LOCAL_TZ = ZoneInfo(os.getenv("RESTAURANT_TZ", "America/Sao_Paulo"))
except Exception:
    # Fallback to system local timezone when tzdata is unavailable (Windows)
    LOCAL_TZ = datetime.now().astimezone().tzinfo


def now_local() -> datetime:
    """Return timezone-aware datetime in the restaurant timezone."""
    return datetime.now(LOCAL_TZ)


def now_local_naive() -> datetime:
    """Return naive datetime representing restaurant local time."""
    return now_local().replace(tzinfo=None)
