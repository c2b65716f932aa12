"""Push channel without an upstream provider; messages are logged."""

from __future__ import annotations

import logging
import uuid

from .base import Delivery, DeliveryChannel, SendResult

logger = logging.getLogger(__name__)


class PushChannel(DeliveryChannel):
    name = "push"

    def send(self, delivery: Delivery) -> SendResult:
        token = delivery.recipient.push_token
        if not token:
            return SendResult.permanent(f"User {delivery.recipient.id} has no push token")
        logger.info("Push to user %s: %s", delivery.recipient.id, delivery.title)
        return SendResult.ok(provider_message_id=f"push-{uuid.uuid4().hex}")


__all__ = ["PushChannel"]
