"""Clock abstraction used by the scheduler and time-based use cases."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Protocol

from .datetime import ensure_app_timezone, now_in_app_timezone


class Clock(Protocol):
    """Anything able to tell the current application time."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock expressed in the configured application timezone."""

    def now(self) -> datetime:
        return now_in_app_timezone()


class ManualClock:
    """Clock that only moves when told to.

    Used to drive scheduler ticks deterministically, e.g. when replaying a
    backlog or in tests.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = ensure_app_timezone(start) or now_in_app_timezone()
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        """Move the clock forward by ``delta`` (or ``timedelta(**kwargs)``)."""

        step = delta if delta is not None else timedelta(**kwargs)
        if step < timedelta(0):
            raise ValueError("ManualClock cannot move backwards")
        with self._lock:
            self._now = self._now + step
            return self._now

    def set(self, value: datetime) -> None:
        moment = ensure_app_timezone(value)
        if moment is None:
            raise ValueError("A datetime is required")
        with self._lock:
            self._now = moment


__all__ = ["Clock", "SystemClock", "ManualClock"]
