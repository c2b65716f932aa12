"""Delivery channel plugins."""

from __future__ import annotations

from collections.abc import Callable

from sqlalchemy.orm import Session

from notifyhub.config import Settings

from .base import (
    OUTCOME_OK,
    OUTCOME_PERMANENT,
    OUTCOME_RETRYABLE,
    ChannelRegistry,
    Delivery,
    DeliveryChannel,
    SendResult,
    classify_exception,
)
from .email import EmailChannel
from .in_app import InAppChannel
from .push import PushChannel
from .sms import SmsChannel


def build_default_registry(
    session_factory: Callable[[], Session], settings: Settings
) -> ChannelRegistry:
    """Return a registry with the built-in channels."""

    return ChannelRegistry(
        [
            InAppChannel(session_factory),
            EmailChannel(settings),
            SmsChannel(),
            PushChannel(),
        ]
    )


__all__ = [
    "ChannelRegistry",
    "Delivery",
    "DeliveryChannel",
    "EmailChannel",
    "InAppChannel",
    "OUTCOME_OK",
    "OUTCOME_PERMANENT",
    "OUTCOME_RETRYABLE",
    "PushChannel",
    "SendResult",
    "SmsChannel",
    "build_default_registry",
    "classify_exception",
]
