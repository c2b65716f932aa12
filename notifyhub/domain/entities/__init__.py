"""Domain entities exposed by the application."""

from .alert import (
    ALERT_KIND_HIGH_FAILURE_RATE,
    ALERT_KIND_LOW_SUCCESS_RATE,
    ALERT_KIND_NO_RECENT_EVENTS,
    ALERT_KIND_SLOW_PROCESSING,
    ALERT_KIND_STUCK_PENDING,
    ALERT_KINDS,
    ALERT_STATUS_OPEN,
    ALERT_STATUS_RESOLVED,
    SEVERITY_CRITICAL,
    SEVERITY_WARNING,
    Alert,
    AlertRule,
)
from .delivery_attempt import (
    ATTEMPT_STATUS_DELIVERED,
    ATTEMPT_STATUS_EXHAUSTED,
    ATTEMPT_STATUS_FAILED,
    ATTEMPT_STATUS_IN_FLIGHT,
    ATTEMPT_STATUS_PENDING,
    ATTEMPT_STATUS_SENT,
    ATTEMPT_SUCCESS_STATUSES,
    ATTEMPT_TERMINAL_STATUSES,
    DeliveryAttempt,
    can_transition,
)
from .notification import Notification
from .notification_request import (
    FREQUENCIES,
    FREQUENCY_DAILY,
    FREQUENCY_MONTHLY,
    FREQUENCY_ONE_TIME,
    FREQUENCY_WEEKLY,
    LEVEL_CRITICAL,
    LEVEL_INFO,
    LEVEL_WARNING,
    NOTIFICATION_LEVELS,
    REQUEST_FINAL_STATUSES,
    REQUEST_STATUS_CANCELLED,
    REQUEST_STATUS_COMPLETED,
    REQUEST_STATUS_DISPATCHING,
    REQUEST_STATUS_FAILED,
    REQUEST_STATUS_PARTIAL,
    REQUEST_STATUS_SCHEDULED,
    NotificationRequest,
)
from .template import NotificationTemplate, NotificationTrigger
from .user import User
from .webhook_event import (
    WEBHOOK_STATUS_FAILED,
    WEBHOOK_STATUS_PENDING,
    WEBHOOK_STATUS_PROCESSED,
    WebhookEvent,
)

__all__ = [
    "Alert",
    "AlertRule",
    "ALERT_KIND_HIGH_FAILURE_RATE",
    "ALERT_KIND_LOW_SUCCESS_RATE",
    "ALERT_KIND_NO_RECENT_EVENTS",
    "ALERT_KIND_SLOW_PROCESSING",
    "ALERT_KIND_STUCK_PENDING",
    "ALERT_KINDS",
    "ALERT_STATUS_OPEN",
    "ALERT_STATUS_RESOLVED",
    "SEVERITY_CRITICAL",
    "SEVERITY_WARNING",
    "DeliveryAttempt",
    "ATTEMPT_STATUS_DELIVERED",
    "ATTEMPT_STATUS_EXHAUSTED",
    "ATTEMPT_STATUS_FAILED",
    "ATTEMPT_STATUS_IN_FLIGHT",
    "ATTEMPT_STATUS_PENDING",
    "ATTEMPT_STATUS_SENT",
    "ATTEMPT_SUCCESS_STATUSES",
    "ATTEMPT_TERMINAL_STATUSES",
    "can_transition",
    "Notification",
    "NotificationRequest",
    "FREQUENCIES",
    "FREQUENCY_DAILY",
    "FREQUENCY_MONTHLY",
    "FREQUENCY_ONE_TIME",
    "FREQUENCY_WEEKLY",
    "LEVEL_CRITICAL",
    "LEVEL_INFO",
    "LEVEL_WARNING",
    "NOTIFICATION_LEVELS",
    "REQUEST_FINAL_STATUSES",
    "REQUEST_STATUS_CANCELLED",
    "REQUEST_STATUS_COMPLETED",
    "REQUEST_STATUS_DISPATCHING",
    "REQUEST_STATUS_FAILED",
    "REQUEST_STATUS_PARTIAL",
    "REQUEST_STATUS_SCHEDULED",
    "NotificationTemplate",
    "NotificationTrigger",
    "User",
    "WebhookEvent",
    "WEBHOOK_STATUS_FAILED",
    "WEBHOOK_STATUS_PENDING",
    "WEBHOOK_STATUS_PROCESSED",
]
