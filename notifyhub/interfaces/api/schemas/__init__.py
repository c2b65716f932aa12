from .monitoring import AlertRead, StatsReportRead, SweepRead, WindowStatsRead
from .notification import (
    DeliveryAttemptRead,
    DomainEventResponse,
    NotificationMarkReadRequest,
    NotificationRead,
    NotificationRequestCreate,
    NotificationRequestRead,
    NotificationSubmitResponse,
    RequestStatusRead,
    UnreadCountRead,
)
from .webhook import WebhookAckRead, WebhookEventRead

__all__ = [
    "AlertRead",
    "DeliveryAttemptRead",
    "DomainEventResponse",
    "NotificationMarkReadRequest",
    "NotificationRead",
    "NotificationRequestCreate",
    "NotificationRequestRead",
    "NotificationSubmitResponse",
    "RequestStatusRead",
    "StatsReportRead",
    "SweepRead",
    "UnreadCountRead",
    "WebhookAckRead",
    "WebhookEventRead",
    "WindowStatsRead",
]
