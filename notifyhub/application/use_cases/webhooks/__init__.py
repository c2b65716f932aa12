"""Webhook ingest use cases."""

from .handlers import (
    ANY,
    DeliveryReceiptHandler,
    PaymentEventHandler,
    WebhookHandlerRegistry,
    build_default_handlers,
)
from .ingest import (
    ACK_FAILED,
    ACK_IN_PROGRESS,
    ACK_PROCESSED,
    AckResult,
    WebhookIngestService,
)

__all__ = [
    "ACK_FAILED",
    "ACK_IN_PROGRESS",
    "ACK_PROCESSED",
    "ANY",
    "AckResult",
    "DeliveryReceiptHandler",
    "PaymentEventHandler",
    "WebhookHandlerRegistry",
    "WebhookIngestService",
    "build_default_handlers",
]
