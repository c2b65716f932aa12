"""Domain entity describing a request to notify a set of recipients."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

LEVEL_INFO = "info"
LEVEL_WARNING = "warning"
LEVEL_CRITICAL = "critical"
NOTIFICATION_LEVELS = (LEVEL_INFO, LEVEL_WARNING, LEVEL_CRITICAL)

REQUEST_STATUS_SCHEDULED = "scheduled"
REQUEST_STATUS_DISPATCHING = "dispatching"
REQUEST_STATUS_COMPLETED = "completed"
REQUEST_STATUS_PARTIAL = "partial"
REQUEST_STATUS_FAILED = "failed"
REQUEST_STATUS_CANCELLED = "cancelled"
REQUEST_FINAL_STATUSES = frozenset(
    {
        REQUEST_STATUS_COMPLETED,
        REQUEST_STATUS_PARTIAL,
        REQUEST_STATUS_FAILED,
        REQUEST_STATUS_CANCELLED,
    }
)

FREQUENCY_ONE_TIME = "one-time"
FREQUENCY_DAILY = "daily"
FREQUENCY_WEEKLY = "weekly"
FREQUENCY_MONTHLY = "monthly"
FREQUENCIES = (FREQUENCY_ONE_TIME, FREQUENCY_DAILY, FREQUENCY_WEEKLY, FREQUENCY_MONTHLY)


@dataclass
class NotificationRequest:
    """Message addressed to users or roles over one or more channels.

    The request is immutable once dispatched; only ``status`` and the
    lifecycle timestamps move afterwards.
    """

    id: int | None
    title: str
    body: str
    level: str = LEVEL_INFO
    recipient_ids: list[int] = field(default_factory=list)
    recipient_roles: list[str] = field(default_factory=list)
    channels: list[str] = field(default_factory=list)
    idempotency_key: str | None = None
    template_name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    require_all_channels: bool = False
    scheduled_at: datetime | None = None
    frequency: str = FREQUENCY_ONE_TIME
    status: str = REQUEST_STATUS_SCHEDULED
    created_at: datetime | None = None
    dispatched_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_critical(self) -> bool:
        return self.level == LEVEL_CRITICAL

    @property
    def is_recurring(self) -> bool:
        return self.frequency != FREQUENCY_ONE_TIME


__all__ = [
    "NotificationRequest",
    "LEVEL_INFO",
    "LEVEL_WARNING",
    "LEVEL_CRITICAL",
    "NOTIFICATION_LEVELS",
    "REQUEST_STATUS_SCHEDULED",
    "REQUEST_STATUS_DISPATCHING",
    "REQUEST_STATUS_COMPLETED",
    "REQUEST_STATUS_PARTIAL",
    "REQUEST_STATUS_FAILED",
    "REQUEST_STATUS_CANCELLED",
    "REQUEST_FINAL_STATUSES",
    "FREQUENCY_ONE_TIME",
    "FREQUENCY_DAILY",
    "FREQUENCY_WEEKLY",
    "FREQUENCY_MONTHLY",
    "FREQUENCIES",
]
