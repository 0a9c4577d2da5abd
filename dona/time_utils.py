"""
Time helpers: UTC normalisation and reference-timezone calendar days.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import dona.config as config


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """Treat naive values as UTC (SQLite drops tzinfo on the way back)."""
    if dt is None:
        return None
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def reference_timezone(offset_hours: Optional[int] = None) -> timezone:
    hours = config.REFERENCE_UTC_OFFSET_HOURS if offset_hours is None else offset_hours
    return timezone(timedelta(hours=hours))


def calendar_day(now_utc: datetime, offset_hours: Optional[int] = None) -> str:
    """YYYY-MM-DD of ``now_utc`` as seen in the reference timezone."""
    local = to_utc_aware(now_utc).astimezone(reference_timezone(offset_hours))
    return local.date().isoformat()
