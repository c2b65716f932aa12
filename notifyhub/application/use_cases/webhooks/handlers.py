"""Domain handlers run for verified webhook events."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from sqlalchemy.orm import Session

from notifyhub.domain.entities import WebhookEvent
from notifyhub.domain.errors import NotFoundError, ValidationError
from notifyhub.infrastructure.repositories import DeliveryAttemptRepository

logger = logging.getLogger(__name__)

ANY = "*"

# A handler applies the event to the domain. It may return the id of the
# delivery attempt the event refers to so the audit row links to it.
WebhookHandler = Callable[[Session, WebhookEvent], "int | None"]
PaymentHook = Callable[[WebhookEvent], None]


class WebhookHandlerRegistry:
    """Handlers keyed by (gateway, event type); ``"*"`` matches anything."""

    def __init__(self) -> None:
        self._handlers: dict[tuple[str, str], WebhookHandler] = {}

    def register(self, gateway: str, event_type: str, handler: WebhookHandler) -> None:
        self._handlers[(gateway, event_type)] = handler

    def resolve(self, gateway: str, event_type: str) -> WebhookHandler | None:
        for key in (
            (gateway, event_type),
            (gateway, ANY),
            (ANY, event_type),
            (ANY, ANY),
        ):
            handler = self._handlers.get(key)
            if handler is not None:
                return handler
        return None


class DeliveryReceiptHandler:
    """Apply provider receipts (``delivered``, ``bounced``, ``failed``) to attempts.

    The receipt references the attempt either by ``attempt_id`` or by the
    ``provider_message_id`` the channel returned when sending.
    """

    def __init__(self, engine: Any) -> None:
        self._engine = engine

    def __call__(self, session: Session, event: WebhookEvent) -> int | None:
        attempt_id = self._find_attempt(session, event.payload)
        if event.event_type == "delivered":
            self._engine.confirm_delivery(session, attempt_id)
        elif event.event_type in ("bounced", "failed"):
            reason = event.payload.get("reason") or event.event_type
            self._engine.record_bounce(session, attempt_id, str(reason))
        else:
            raise ValidationError(f"Unsupported delivery receipt type {event.event_type!r}")
        return attempt_id

    @staticmethod
    def _find_attempt(session: Session, payload: Mapping[str, Any]) -> int:
        raw_id = payload.get("attempt_id")
        if raw_id is not None:
            try:
                return int(raw_id)
            except (TypeError, ValueError) as exc:
                raise ValidationError(f"Invalid attempt_id {raw_id!r}") from exc

        message_id = payload.get("provider_message_id")
        if message_id:
            attempt_id = DeliveryAttemptRepository(session).find_id_by_provider_message_id(
                str(message_id)
            )
            if attempt_id is not None:
                return attempt_id
            raise NotFoundError(f"No delivery attempt for provider message {message_id!r}")
        raise ValidationError("Receipt does not reference a delivery attempt")


class PaymentEventHandler:
    """Forward payment gateway events to marketplace hooks.

    Event types without a hook are logged and still count as processed.
    """

    def __init__(self, hooks: Mapping[str, PaymentHook] | None = None) -> None:
        self._hooks = dict(hooks or {})

    def __call__(self, session: Session, event: WebhookEvent) -> int | None:
        hook = self._hooks.get(event.event_type)
        if hook is None:
            logger.info("Unhandled %s webhook type: %s", event.gateway, event.event_type)
            return None
        hook(event)
        return None


def build_default_handlers(
    engine: Any,
    *,
    payment_hooks: Mapping[str, PaymentHook] | None = None,
) -> WebhookHandlerRegistry:
    registry = WebhookHandlerRegistry()
    registry.register("delivery", ANY, DeliveryReceiptHandler(engine))
    payments = PaymentEventHandler(payment_hooks)
    for gateway in ("stripe", "paystack", "paypal"):
        registry.register(gateway, ANY, payments)
    return registry


__all__ = [
    "ANY",
    "DeliveryReceiptHandler",
    "PaymentEventHandler",
    "PaymentHook",
    "WebhookHandler",
    "WebhookHandlerRegistry",
    "build_default_handlers",
]
