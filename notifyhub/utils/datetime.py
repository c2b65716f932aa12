"""Timezone handling shared by entities, repositories and the scheduler.

Entities carry aware datetimes in the configured ``APP_TIMEZONE``. Columns
are stored naive (SQLite drops offsets), so repositories convert on the
way in and out with :func:`ensure_app_naive_datetime` and
:func:`ensure_app_timezone`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone, tzinfo
from functools import lru_cache

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from notifyhub.config import get_settings

logger = logging.getLogger(__name__)


def _parse_offset(name: str) -> tzinfo | None:
    # Accepts "UTC+3", "GMT-05:30" and "UTC+0530".
    upper = name.upper()
    for prefix in ("UTC", "GMT"):
        if upper.startswith(prefix):
            rest = upper[len(prefix):]
            break
    else:
        return None
    if not rest or rest[0] not in "+-":
        return None
    sign = -1 if rest[0] == "-" else 1
    digits = rest[1:].replace(":", "")
    if not digits.isdigit() or len(digits) > 4:
        return None
    if len(digits) <= 2:
        hours, minutes = int(digits), 0
    else:
        hours, minutes = int(digits[:-2]), int(digits[-2:])
    if hours > 14 or minutes >= 60:
        return None
    return timezone(sign * timedelta(hours=hours, minutes=minutes))


@lru_cache(maxsize=1)
def get_app_timezone() -> tzinfo:
    """Return the timezone named by ``APP_TIMEZONE``; unknown names fall back to UTC."""

    name = (get_settings().app_timezone or "").strip()
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        offset = _parse_offset(name)
        if offset is None:
            logger.warning("Unknown APP_TIMEZONE %r; using UTC", name)
            return timezone.utc
        return offset


def now_in_app_timezone() -> datetime:
    return datetime.now(tz=get_app_timezone())


def now_in_app_naive_datetime() -> datetime:
    """Column default for ``created_at``-style fields."""

    return now_in_app_timezone().replace(tzinfo=None)


def ensure_app_timezone(value: datetime | None) -> datetime | None:
    """Attach (naive input) or convert to the application timezone."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=get_app_timezone())
    return value.astimezone(get_app_timezone())


def ensure_app_naive_datetime(value: datetime | None) -> datetime | None:
    """Return the wall-clock time in the application timezone, without ``tzinfo``."""

    aware = ensure_app_timezone(value)
    return None if aware is None else aware.replace(tzinfo=None)


__all__ = [
    "ensure_app_naive_datetime",
    "ensure_app_timezone",
    "get_app_timezone",
    "now_in_app_naive_datetime",
    "now_in_app_timezone",
]
