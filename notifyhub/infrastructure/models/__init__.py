"""ORM models used by the application infrastructure."""

from .alert import AlertModel, AlertRuleModel
from .delivery_attempt import DeliveryAttemptModel
from .notification import NotificationModel
from .notification_request import NotificationRequestModel
from .template import NotificationTemplateModel, NotificationTriggerModel
from .user import UserModel
from .webhook_event import WebhookEventModel

__all__ = [
    "AlertModel",
    "AlertRuleModel",
    "DeliveryAttemptModel",
    "NotificationModel",
    "NotificationRequestModel",
    "NotificationTemplateModel",
    "NotificationTriggerModel",
    "UserModel",
    "WebhookEventModel",
]
