"""In-app channel: inbox row plus a realtime websocket push."""

from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy.orm import Session

from notifyhub.domain.entities import Notification
from notifyhub.infrastructure.notifications import (
    NotificationPublisher,
    notification_publisher,
)
from notifyhub.infrastructure.repositories import NotificationRepository

from .base import Delivery, DeliveryChannel, SendResult

logger = logging.getLogger(__name__)


class InAppChannel(DeliveryChannel):
    """Persist the notification in the user's inbox and push it live.

    The attempt only becomes ``delivered`` once the user reads (acks) the
    inbox row, which is why confirmation is supported.
    """

    name = "in_app"
    supports_confirmation = True

    def __init__(
        self,
        session_factory: Callable[[], Session],
        publisher: NotificationPublisher | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._publisher = publisher or notification_publisher

    def send(self, delivery: Delivery) -> SendResult:
        session = self._session_factory()
        try:
            notification = NotificationRepository(session).create(
                Notification(
                    id=None,
                    user_id=delivery.recipient.id,
                    event_type=str(delivery.metadata.get("event_type") or delivery.level),
                    title=delivery.title,
                    message=delivery.body,
                    payload={
                        "attempt_id": delivery.attempt_id,
                        "request_id": delivery.request_id,
                        "level": delivery.level,
                    },
                )
            )
        finally:
            session.close()

        try:
            self._publisher.dispatch(notification)
        except Exception:  # pragma: no cover - the inbox row is the source of truth
            logger.exception("Realtime push failed for notification %s", notification.id)
        return SendResult.ok(provider_message_id=f"notification:{notification.id}")


__all__ = ["InAppChannel"]
