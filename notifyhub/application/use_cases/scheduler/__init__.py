"""Tick-driven scheduler for due notifications, retries and monitoring."""

from .recurrence import next_occurrence
from .runner import Scheduler, TickReport

__all__ = ["Scheduler", "TickReport", "next_occurrence"]
