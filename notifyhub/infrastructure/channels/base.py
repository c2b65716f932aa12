"""Uniform contract shared by every delivery channel."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.error import URLError

from notifyhub.domain.entities import User
from notifyhub.domain.errors import PermanentError, RetryableError

logger = logging.getLogger(__name__)

OUTCOME_OK = "ok"
OUTCOME_RETRYABLE = "retryable_error"
OUTCOME_PERMANENT = "permanent_error"

# Transport failures that are worth another attempt.
TRANSIENT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    TimeoutError,
    ConnectionError,
    URLError,
    RetryableError,
)


@dataclass(frozen=True)
class Delivery:
    """Everything a channel needs to send one delivery attempt."""

    attempt_id: int
    request_id: int
    channel: str
    recipient: User
    title: str
    body: str
    level: str = "info"
    attempt_number: int = 1
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SendResult:
    """Outcome reported by :meth:`DeliveryChannel.send`."""

    outcome: str
    provider_message_id: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, provider_message_id: str | None = None) -> "SendResult":
        return cls(OUTCOME_OK, provider_message_id=provider_message_id)

    @classmethod
    def retryable(cls, error: str) -> "SendResult":
        return cls(OUTCOME_RETRYABLE, error=error)

    @classmethod
    def permanent(cls, error: str) -> "SendResult":
        return cls(OUTCOME_PERMANENT, error=error)

    @property
    def is_ok(self) -> bool:
        return self.outcome == OUTCOME_OK


def classify_exception(exc: BaseException) -> SendResult:
    """Turn an exception raised by a channel into a :class:`SendResult`."""

    message = f"{type(exc).__name__}: {exc}"
    if isinstance(exc, PermanentError):
        return SendResult.permanent(message)
    if isinstance(exc, TRANSIENT_EXCEPTIONS):
        return SendResult.retryable(message)
    return SendResult.permanent(message)


class DeliveryChannel:
    """Base class for channel plugins.

    Subclasses set ``name`` and implement :meth:`send`. Channels whose
    provider reports a later delivery receipt set ``supports_confirmation``.
    """

    name: str = ""
    supports_confirmation: bool = False

    def send(self, delivery: Delivery) -> SendResult:
        raise NotImplementedError


class ChannelRegistry:
    """Channels keyed by name; new channels register without engine changes."""

    def __init__(self, channels: list[DeliveryChannel] | None = None) -> None:
        self._channels: dict[str, DeliveryChannel] = {}
        for channel in channels or []:
            self.register(channel)

    def register(self, channel: DeliveryChannel) -> None:
        if not channel.name:
            raise ValueError("Delivery channels must define a name")
        if channel.name in self._channels:
            logger.info("Replacing delivery channel %s", channel.name)
        self._channels[channel.name] = channel

    def get(self, name: str) -> DeliveryChannel | None:
        return self._channels.get(name)

    def names(self) -> list[str]:
        return sorted(self._channels)

    def __contains__(self, name: object) -> bool:
        return name in self._channels


__all__ = [
    "ChannelRegistry",
    "Delivery",
    "DeliveryChannel",
    "OUTCOME_OK",
    "OUTCOME_PERMANENT",
    "OUTCOME_RETRYABLE",
    "SendResult",
    "TRANSIENT_EXCEPTIONS",
    "classify_exception",
]
