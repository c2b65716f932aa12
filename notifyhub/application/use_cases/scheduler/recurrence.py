"""Next-occurrence arithmetic for recurring notifications."""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta

from notifyhub.domain.entities import (
    FREQUENCY_DAILY,
    FREQUENCY_MONTHLY,
    FREQUENCY_ONE_TIME,
    FREQUENCY_WEEKLY,
)


def _add_months(value: datetime, months: int) -> datetime:
    """``value`` moved ``months`` ahead, the day clamped to the target month."""

    index = value.month - 1 + months
    year = value.year + index // 12
    month = index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _occurrence(anchor: datetime, frequency: str, index: int) -> datetime:
    if frequency == FREQUENCY_DAILY:
        return anchor + timedelta(days=index)
    if frequency == FREQUENCY_WEEKLY:
        return anchor + timedelta(weeks=index)
    if frequency == FREQUENCY_MONTHLY:
        return _add_months(anchor, index)
    raise ValueError(f"Unsupported frequency {frequency!r}")


def next_occurrence(
    scheduled_at: datetime,
    frequency: str,
    *,
    after: datetime,
    anchor: datetime | None = None,
) -> datetime | None:
    """First occurrence later than both ``scheduled_at`` and ``after``.

    Occurrences are counted from ``anchor``, the first run of the series
    (``scheduled_at`` when not given), so a monthly series started on the
    31st comes back to the 31st after a short month. Missed occurrences are
    skipped rather than replayed one by one. One-time requests return ``None``.
    """

    if frequency == FREQUENCY_ONE_TIME:
        return None
    anchor = anchor or scheduled_at
    floor = max(scheduled_at, after)
    index = 1
    candidate = _occurrence(anchor, frequency, index)
    while candidate <= floor:
        index += 1
        candidate = _occurrence(anchor, frequency, index)
    return candidate


__all__ = ["next_occurrence"]
