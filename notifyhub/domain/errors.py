"""Error taxonomy shared by the dispatch, ingest and monitoring use cases.

Channel and gateway failures are classified into these kinds at the
dispatch/ingest boundary so callers never handle raw transport exceptions.
"""

from __future__ import annotations


class NotifyHubError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(NotifyHubError, ValueError):
    """Input rejected before anything is persisted."""


class NotFoundError(NotifyHubError, LookupError):
    """The referenced request, attempt, event or alert does not exist."""


class SignatureInvalid(NotifyHubError):
    """A webhook signature is missing or does not match the gateway secret."""


class MalformedPayload(NotifyHubError):
    """A webhook body could not be parsed into an event."""


class DeliveryError(NotifyHubError):
    """Failure reported by a delivery channel."""


class RetryableError(DeliveryError):
    """Transient delivery failure (timeouts, throttling, 5xx)."""


class PermanentError(DeliveryError):
    """Terminal delivery failure that must not be retried."""


class DuplicateRequestError(NotifyHubError):
    """A request with the same idempotency key was already submitted."""

    def __init__(self, existing_id: int, idempotency_key: str | None = None) -> None:
        self.existing_id = existing_id
        self.idempotency_key = idempotency_key
        super().__init__(
            f"Notification request already submitted as {existing_id}"
            + (f" (idempotency key {idempotency_key!r})" if idempotency_key else "")
        )


class InvalidTransition(NotifyHubError):
    """A status change that would break the delivery state machine."""


__all__ = [
    "NotifyHubError",
    "ValidationError",
    "NotFoundError",
    "SignatureInvalid",
    "MalformedPayload",
    "DeliveryError",
    "RetryableError",
    "PermanentError",
    "DuplicateRequestError",
    "InvalidTransition",
]
