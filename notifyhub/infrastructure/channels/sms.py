"""SMS channel without an upstream provider; messages are logged."""

from __future__ import annotations

import logging
import uuid

from .base import Delivery, DeliveryChannel, SendResult

logger = logging.getLogger(__name__)


class SmsChannel(DeliveryChannel):
    name = "sms"

    def send(self, delivery: Delivery) -> SendResult:
        phone = delivery.recipient.phone
        if not phone:
            return SendResult.permanent(f"User {delivery.recipient.id} has no phone number")
        logger.info("SMS to %s: %s", phone, delivery.title)
        return SendResult.ok(provider_message_id=f"sms-{uuid.uuid4().hex}")


__all__ = ["SmsChannel"]
