"""Repository implementations for persistence operations."""

from .alert_repository import AlertRepository, AlertRuleRepository
from .delivery_attempt_repository import DeliveryAttemptRepository
from .notification_repository import NotificationRepository
from .notification_request_repository import NotificationRequestRepository
from .template_repository import (
    NotificationTemplateRepository,
    NotificationTriggerRepository,
)
from .user_repository import UserRepository
from .webhook_event_repository import GatewayCounts, WebhookEventRepository

__all__ = [
    "AlertRepository",
    "AlertRuleRepository",
    "DeliveryAttemptRepository",
    "GatewayCounts",
    "NotificationRepository",
    "NotificationRequestRepository",
    "NotificationTemplateRepository",
    "NotificationTriggerRepository",
    "UserRepository",
    "WebhookEventRepository",
]
