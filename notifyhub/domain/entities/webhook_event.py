"""Domain entity for an inbound gateway webhook."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

WEBHOOK_STATUS_PENDING = "pending"
WEBHOOK_STATUS_PROCESSED = "processed"
WEBHOOK_STATUS_FAILED = "failed"


@dataclass
class WebhookEvent:
    """Audit record of a webhook; (gateway, external_event_id) is unique."""

    id: int | None
    gateway: str
    external_event_id: str
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    raw_body: str | None = None
    status: str = WEBHOOK_STATUS_PENDING
    received_at: datetime | None = None
    processed_at: datetime | None = None
    error_message: str | None = None
    attempt_id: int | None = None

    @property
    def processing_seconds(self) -> float | None:
        if self.received_at is None or self.processed_at is None:
            return None
        return (self.processed_at - self.received_at).total_seconds()


__all__ = [
    "WebhookEvent",
    "WEBHOOK_STATUS_PENDING",
    "WEBHOOK_STATUS_PROCESSED",
    "WEBHOOK_STATUS_FAILED",
]
