"""Pydantic models describing notification requests and inbox payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class NotificationRequestCreate(BaseModel):
    """Payload used by producers to submit a notification."""

    model_config = ConfigDict(extra="forbid")

    title: str = Field(default="", max_length=191)
    body: str = ""
    level: str = Field(default="info", pattern="^(info|warning|critical)$")
    recipient_ids: list[int] = Field(default_factory=list)
    recipient_roles: list[str] = Field(default_factory=list)
    channels: list[str] = Field(default_factory=list)
    idempotency_key: str | None = Field(default=None, max_length=191)
    template_name: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    require_all_channels: bool = False
    scheduled_at: datetime | None = None
    frequency: str = Field(default="one-time", pattern="^(one-time|daily|weekly|monthly)$")

    @model_validator(mode="after")
    def _require_audience(self) -> "NotificationRequestCreate":
        if not self.recipient_ids and not self.recipient_roles:
            raise ValueError("recipient_ids or recipient_roles is required")
        return self


class NotificationSubmitResponse(BaseModel):
    id: int
    duplicate: bool = False


class DeliveryAttemptRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    recipient_id: int
    channel: str
    level: str
    status: str
    attempt_count: int
    max_attempts: int
    last_error: str | None = None
    next_retry_at: datetime | None = None
    provider_message_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    sent_at: datetime | None = None
    delivered_at: datetime | None = None


class NotificationRequestRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    body: str
    level: str
    recipient_ids: list[int]
    recipient_roles: list[str]
    channels: list[str]
    idempotency_key: str | None = None
    template_name: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    require_all_channels: bool
    scheduled_at: datetime | None = None
    frequency: str
    status: str
    created_at: datetime | None = None
    dispatched_at: datetime | None = None
    completed_at: datetime | None = None


class RequestStatusRead(BaseModel):
    request: NotificationRequestRead
    attempts: list[DeliveryAttemptRead]
    counts: dict[str, int]
    outcome: str | None = None


class DomainEventResponse(BaseModel):
    event: str
    request_ids: list[int]


class NotificationMarkReadRequest(BaseModel):
    """Payload used to mark a batch of notifications as read.

    Omitting ``ids`` marks every unread notification of the user.
    """

    ids: list[int] | None = Field(default=None, description="Notification identifiers")

    def unique_ids(self) -> list[int] | None:
        if self.ids is None:
            return None
        return list(dict.fromkeys(self.ids))


class NotificationRead(BaseModel):
    """Representation of a notification delivered to the client."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    event_type: str
    title: str
    message: str
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    read_at: datetime | None = None


class UnreadCountRead(BaseModel):
    user_id: int
    unread: int


__all__ = [
    "DeliveryAttemptRead",
    "DomainEventResponse",
    "NotificationMarkReadRequest",
    "NotificationRead",
    "NotificationRequestCreate",
    "NotificationRequestRead",
    "NotificationSubmitResponse",
    "RequestStatusRead",
    "UnreadCountRead",
]
