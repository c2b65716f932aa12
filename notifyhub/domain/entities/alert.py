"""Domain entities for monitoring rules and the alerts they raise."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

ALERT_KIND_LOW_SUCCESS_RATE = "low-success-rate"
ALERT_KIND_HIGH_FAILURE_RATE = "high-failure-rate"
ALERT_KIND_STUCK_PENDING = "stuck-pending"
ALERT_KIND_NO_RECENT_EVENTS = "no-recent-events"
ALERT_KIND_SLOW_PROCESSING = "slow-processing"
ALERT_KINDS = (
    ALERT_KIND_LOW_SUCCESS_RATE,
    ALERT_KIND_HIGH_FAILURE_RATE,
    ALERT_KIND_STUCK_PENDING,
    ALERT_KIND_NO_RECENT_EVENTS,
    ALERT_KIND_SLOW_PROCESSING,
)

SEVERITY_WARNING = "warning"
SEVERITY_CRITICAL = "critical"

ALERT_STATUS_OPEN = "open"
ALERT_STATUS_RESOLVED = "resolved"

COMPARISONS = {
    "lt": lambda value, threshold: value < threshold,
    "lte": lambda value, threshold: value <= threshold,
    "gt": lambda value, threshold: value > threshold,
    "gte": lambda value, threshold: value >= threshold,
}


@dataclass
class AlertRule:
    """Threshold applied to one metric of the webhook statistics."""

    id: int | None
    name: str
    kind: str
    metric: str
    comparison: str
    threshold: float
    window_seconds: int
    severity: str = SEVERITY_WARNING
    per_gateway: bool = False
    is_active: bool = True

    def matches(self, value: float | None) -> bool:
        """Return ``True`` when ``value`` breaches the rule."""

        if value is None:
            return False
        compare = COMPARISONS.get(self.comparison)
        if compare is None:
            raise ValueError(f"Unsupported comparison {self.comparison!r}")
        return compare(value, self.threshold)


@dataclass
class Alert:
    """Operator alert; deduplicated on (kind, gateway) while open."""

    id: int | None
    rule_id: int | None
    kind: str
    gateway: str | None
    severity: str
    message: str
    payload: dict[str, Any] = field(default_factory=dict)
    status: str = ALERT_STATUS_OPEN
    triggered_at: datetime | None = None
    resolved_at: datetime | None = None
    notification_request_id: int | None = None

    @property
    def dedup_key(self) -> tuple[str, str | None]:
        return (self.kind, self.gateway)


__all__ = [
    "Alert",
    "AlertRule",
    "ALERT_KIND_LOW_SUCCESS_RATE",
    "ALERT_KIND_HIGH_FAILURE_RATE",
    "ALERT_KIND_STUCK_PENDING",
    "ALERT_KIND_NO_RECENT_EVENTS",
    "ALERT_KIND_SLOW_PROCESSING",
    "ALERT_KINDS",
    "SEVERITY_WARNING",
    "SEVERITY_CRITICAL",
    "ALERT_STATUS_OPEN",
    "ALERT_STATUS_RESOLVED",
    "COMPARISONS",
]
