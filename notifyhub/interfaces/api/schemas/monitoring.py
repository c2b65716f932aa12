"""Schemas for monitoring statistics and alerts."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WindowStatsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    processed: int
    failed: int
    pending: int
    success_rate: float
    avg_processing_seconds: float | None = None
    stuck_pending: int
    last_received_at: datetime | None = None
    seconds_since_last_event: float | None = None


class StatsReportRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    window_seconds: int
    generated_at: datetime
    overall: WindowStatsRead
    gateways: dict[str, WindowStatsRead] = Field(default_factory=dict)


class AlertRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    rule_id: int | None = None
    kind: str
    gateway: str | None = None
    severity: str
    message: str
    payload: dict[str, Any] = Field(default_factory=dict)
    status: str
    triggered_at: datetime | None = None
    resolved_at: datetime | None = None
    notification_request_id: int | None = None


class SweepRead(BaseModel):
    candidates: int
    opened: list[AlertRead]
    refreshed: list[AlertRead]
    resolved: list[AlertRead]


__all__ = ["AlertRead", "StatsReportRead", "SweepRead", "WindowStatsRead"]
