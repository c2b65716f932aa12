"""Domain entity tracking the delivery of a request to one recipient channel."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

ATTEMPT_STATUS_PENDING = "pending"
ATTEMPT_STATUS_IN_FLIGHT = "in_flight"
ATTEMPT_STATUS_SENT = "sent"
ATTEMPT_STATUS_DELIVERED = "delivered"
ATTEMPT_STATUS_FAILED = "failed"
ATTEMPT_STATUS_EXHAUSTED = "exhausted"

ATTEMPT_TERMINAL_STATUSES = frozenset(
    {ATTEMPT_STATUS_DELIVERED, ATTEMPT_STATUS_FAILED, ATTEMPT_STATUS_EXHAUSTED}
)
ATTEMPT_SUCCESS_STATUSES = frozenset({ATTEMPT_STATUS_SENT, ATTEMPT_STATUS_DELIVERED})

# Allowed moves of the delivery state machine. Terminal states have no exit.
_TRANSITIONS: dict[str, frozenset[str]] = {
    ATTEMPT_STATUS_PENDING: frozenset({ATTEMPT_STATUS_IN_FLIGHT, ATTEMPT_STATUS_FAILED}),
    ATTEMPT_STATUS_IN_FLIGHT: frozenset(
        {
            ATTEMPT_STATUS_PENDING,
            ATTEMPT_STATUS_SENT,
            ATTEMPT_STATUS_FAILED,
            ATTEMPT_STATUS_EXHAUSTED,
        }
    ),
    ATTEMPT_STATUS_SENT: frozenset({ATTEMPT_STATUS_DELIVERED, ATTEMPT_STATUS_FAILED}),
    ATTEMPT_STATUS_DELIVERED: frozenset(),
    ATTEMPT_STATUS_FAILED: frozenset(),
    ATTEMPT_STATUS_EXHAUSTED: frozenset(),
}


def can_transition(current: str, new: str) -> bool:
    """Return ``True`` when ``current -> new`` is a legal status change."""

    return new in _TRANSITIONS.get(current, frozenset())


@dataclass
class DeliveryAttempt:
    """One (recipient, channel) pair of a :class:`NotificationRequest`."""

    id: int | None
    request_id: int
    recipient_id: int
    channel: str
    level: str
    status: str = ATTEMPT_STATUS_PENDING
    attempt_count: int = 0
    max_attempts: int = 5
    last_error: str | None = None
    next_retry_at: datetime | None = None
    provider_message_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    sent_at: datetime | None = None
    delivered_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ATTEMPT_TERMINAL_STATUSES

    @property
    def succeeded(self) -> bool:
        return self.status in ATTEMPT_SUCCESS_STATUSES

    @property
    def is_settled(self) -> bool:
        """Whether the engine has nothing left to do for this attempt."""

        return self.is_terminal or self.status == ATTEMPT_STATUS_SENT

__all__ = [
    "DeliveryAttempt",
    "ATTEMPT_STATUS_PENDING",
    "ATTEMPT_STATUS_IN_FLIGHT",
    "ATTEMPT_STATUS_SENT",
    "ATTEMPT_STATUS_DELIVERED",
    "ATTEMPT_STATUS_FAILED",
    "ATTEMPT_STATUS_EXHAUSTED",
    "ATTEMPT_TERMINAL_STATUSES",
    "ATTEMPT_SUCCESS_STATUSES",
    "can_transition",
]
