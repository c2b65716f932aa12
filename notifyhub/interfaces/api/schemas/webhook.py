"""Schemas for the webhook receiver and the manual review list."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WebhookAckRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    outcome: str
    gateway: str
    external_event_id: str
    event_id: int | None = None
    event_type: str | None = None
    event_status: str | None = None
    error: str | None = None
    duplicate: bool = False


class WebhookEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    gateway: str
    external_event_id: str
    event_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    status: str
    received_at: datetime | None = None
    processed_at: datetime | None = None
    error_message: str | None = None
    attempt_id: int | None = None


__all__ = ["WebhookAckRead", "WebhookEventRead"]
