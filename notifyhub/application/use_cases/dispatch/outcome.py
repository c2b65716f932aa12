"""Aggregation of attempt states into a request outcome."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from notifyhub.domain.entities import (
    REQUEST_STATUS_COMPLETED,
    REQUEST_STATUS_FAILED,
    REQUEST_STATUS_PARTIAL,
    DeliveryAttempt,
    NotificationRequest,
)


def aggregate_outcome(
    attempts: Iterable[DeliveryAttempt], *, require_all_channels: bool = False
) -> str | None:
    """Return the final request status, or ``None`` while work remains.

    A request completes when every recipient was reached on at least one
    channel (on every channel with ``require_all_channels``), fails when
    nothing got through and is partial otherwise.
    """

    attempts = list(attempts)
    if not attempts:
        return REQUEST_STATUS_FAILED
    if not all(attempt.is_settled for attempt in attempts):
        return None

    succeeded = [attempt for attempt in attempts if attempt.succeeded]
    if not succeeded:
        return REQUEST_STATUS_FAILED
    if require_all_channels:
        if len(succeeded) == len(attempts):
            return REQUEST_STATUS_COMPLETED
        return REQUEST_STATUS_PARTIAL

    recipients = {attempt.recipient_id for attempt in attempts}
    reached = {attempt.recipient_id for attempt in succeeded}
    return REQUEST_STATUS_COMPLETED if reached == recipients else REQUEST_STATUS_PARTIAL


@dataclass
class RequestStatus:
    """Snapshot of a request with its attempts."""

    request: NotificationRequest
    attempts: Sequence[DeliveryAttempt]
    counts: dict[str, int] = field(default_factory=dict)
    outcome: str | None = None

    @classmethod
    def build(
        cls, request: NotificationRequest, attempts: Sequence[DeliveryAttempt]
    ) -> "RequestStatus":
        return cls(
            request=request,
            attempts=attempts,
            counts=dict(Counter(attempt.status for attempt in attempts)),
            outcome=aggregate_outcome(
                attempts, require_all_channels=request.require_all_channels
            )
            if attempts
            else None,
        )


__all__ = ["RequestStatus", "aggregate_outcome"]
