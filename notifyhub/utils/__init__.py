"""Utility helpers for reusable functionality."""

from .clock import Clock, ManualClock, SystemClock
from .datetime import (
    ensure_app_naive_datetime,
    ensure_app_timezone,
    get_app_timezone,
    now_in_app_naive_datetime,
    now_in_app_timezone,
)
from .logs import configure_logging

__all__ = [
    "Clock",
    "ManualClock",
    "SystemClock",
    "configure_logging",
    "ensure_app_naive_datetime",
    "ensure_app_timezone",
    "get_app_timezone",
    "now_in_app_naive_datetime",
    "now_in_app_timezone",
]
