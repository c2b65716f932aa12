"""Dispatch engine: fan-out, claiming, sending and retry of deliveries."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from datetime import datetime

from sqlalchemy.orm import Session

from notifyhub.config import Settings, get_settings
from notifyhub.domain.entities import (
    ATTEMPT_STATUS_DELIVERED,
    ATTEMPT_STATUS_EXHAUSTED,
    ATTEMPT_STATUS_FAILED,
    ATTEMPT_STATUS_IN_FLIGHT,
    ATTEMPT_STATUS_PENDING,
    ATTEMPT_STATUS_SENT,
    FREQUENCIES,
    NOTIFICATION_LEVELS,
    REQUEST_FINAL_STATUSES,
    REQUEST_STATUS_CANCELLED,
    REQUEST_STATUS_DISPATCHING,
    REQUEST_STATUS_FAILED,
    REQUEST_STATUS_SCHEDULED,
    DeliveryAttempt,
    NotificationRequest,
    User,
)
from notifyhub.domain.errors import (
    DuplicateRequestError,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from notifyhub.infrastructure.channels import (
    OUTCOME_OK,
    OUTCOME_RETRYABLE,
    ChannelRegistry,
    Delivery,
    SendResult,
    classify_exception,
)
from notifyhub.infrastructure.repositories import (
    DeliveryAttemptRepository,
    NotificationRequestRepository,
    UserRepository,
)
from notifyhub.utils import Clock, SystemClock, ensure_app_timezone

from ..templates import get_template, render_template
from .backoff import compute_backoff
from .outcome import RequestStatus, aggregate_outcome

logger = logging.getLogger(__name__)


@dataclass
class RunSummary:
    """Counters of one :meth:`DispatchEngine.run_pending` pass."""

    claimed: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0
    exhausted: int = 0
    lost_claims: int = 0
    critical_only: bool = False
    request_ids: set[int] = field(default_factory=set)


class DispatchEngine:
    """Expand requests into delivery attempts and push them through channels.

    Every status change goes through a compare-and-set update, so an
    attempt has exactly one writer once claimed. Channel sends run on a
    fixed-size thread pool; state is applied back on the calling thread.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        channels: ChannelRegistry,
        settings: Settings | None = None,
        *,
        clock: Clock | None = None,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.channels = channels
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.settings.dispatch_workers,
            thread_name_prefix="notifyhub-send",
        )

    # submission -------------------------------------------------------

    def submit(
        self, session: Session, request: NotificationRequest, *, now: datetime | None = None
    ) -> int:
        """Validate and persist ``request``; return its id.

        A request whose idempotency key was already used is not stored
        again; the existing id is returned instead.
        """

        now = now or self.clock.now()
        request = self._prepare(session, request)
        self._resolve_recipients(session, request)

        immediate = request.scheduled_at is None or request.scheduled_at <= now
        request = replace(
            request,
            id=None,
            status=REQUEST_STATUS_DISPATCHING if immediate else REQUEST_STATUS_SCHEDULED,
            created_at=now,
            dispatched_at=now if immediate else None,
            completed_at=None,
        )

        try:
            stored = NotificationRequestRepository(session).create(request)
        except DuplicateRequestError as exc:
            logger.info(
                "Duplicate notification request %r; returning existing id %s",
                exc.idempotency_key,
                exc.existing_id,
            )
            return exc.existing_id

        if self.is_backpressured(session):
            logger.warning(
                "Delivery backlog above %s; request %s accepted but non-critical work is throttled",
                self.settings.max_pending_depth,
                stored.id,
            )

        if immediate:
            self._expand(session, stored, now=now)
        else:
            logger.info("Notification request %s scheduled for %s", stored.id, stored.scheduled_at)
        return stored.id

    def release(
        self, session: Session, request: NotificationRequest, *, now: datetime | None = None
    ) -> bool:
        """Move a due ``scheduled`` request to ``dispatching`` and expand it."""

        now = now or self.clock.now()
        repository = NotificationRequestRepository(session)
        if not repository.compare_and_set_status(
            request.id, expected=REQUEST_STATUS_SCHEDULED, new=REQUEST_STATUS_DISPATCHING, at=now
        ):
            return False
        self._expand(session, request, now=now)
        return True

    def cancel(self, session: Session, request_id: int) -> NotificationRequest:
        """Cancel a request that has not been released yet."""

        repository = NotificationRequestRepository(session)
        request = repository.get(request_id)
        if request is None:
            raise NotFoundError(f"Notification request {request_id} not found")
        if request.status == REQUEST_STATUS_CANCELLED:
            return request
        if not repository.compare_and_set_status(
            request_id, expected=REQUEST_STATUS_SCHEDULED, new=REQUEST_STATUS_CANCELLED
        ):
            raise ValidationError(
                f"Notification request {request_id} is {request.status} and can no longer be cancelled"
            )
        logger.info("Notification request %s cancelled", request_id)
        return repository.get(request_id)

    # status -----------------------------------------------------------

    def get_status(self, session: Session, request_id: int) -> list[DeliveryAttempt]:
        if NotificationRequestRepository(session).get(request_id) is None:
            raise NotFoundError(f"Notification request {request_id} not found")
        return list(DeliveryAttemptRepository(session).list_for_request(request_id))

    def request_status(self, session: Session, request_id: int) -> RequestStatus:
        request = NotificationRequestRepository(session).get(request_id)
        if request is None:
            raise NotFoundError(f"Notification request {request_id} not found")
        attempts = DeliveryAttemptRepository(session).list_for_request(request_id)
        return RequestStatus.build(request, attempts)

    def is_backpressured(self, session: Session) -> bool:
        return DeliveryAttemptRepository(session).count_backlog() > self.settings.max_pending_depth

    # delivery ---------------------------------------------------------

    def run_pending(self, now: datetime | None = None, *, limit: int | None = None) -> RunSummary:
        """Claim due attempts and send them on the worker pool."""

        now = now or self.clock.now()
        summary = RunSummary()
        session = self._session_factory()
        try:
            attempts = DeliveryAttemptRepository(session)
            summary.critical_only = self.is_backpressured(session)
            due_ids = attempts.list_due_ids(
                now,
                critical_only=summary.critical_only,
                limit=limit or self.settings.dispatch_workers * 25,
            )
            claimed: list[DeliveryAttempt] = []
            for attempt_id in due_ids:
                attempt = attempts.claim(attempt_id, now=now)
                if attempt is None:
                    summary.lost_claims += 1
                    continue
                claimed.append(attempt)
            summary.claimed = len(claimed)
            if not claimed:
                return summary

            deliveries = self._build_deliveries(session, claimed, now=now, summary=summary)
            batch_size = self.settings.dispatch_workers
            for start in range(0, len(deliveries), batch_size):
                self._send_batch(session, deliveries[start : start + batch_size], now, summary)

            for request_id in sorted(summary.request_ids):
                self._settle_request(session, request_id, now=now)
        finally:
            session.close()

        logger.info(
            "Dispatch pass: claimed=%s sent=%s retried=%s failed=%s exhausted=%s critical_only=%s",
            summary.claimed,
            summary.sent,
            summary.retried,
            summary.failed,
            summary.exhausted,
            summary.critical_only,
        )
        return summary

    def _send_batch(
        self,
        session: Session,
        batch: Sequence[tuple[DeliveryAttempt, Delivery]],
        now: datetime,
        summary: RunSummary,
    ) -> None:
        futures: dict[Future, DeliveryAttempt] = {}
        for attempt, delivery in batch:
            channel = self.channels.get(attempt.channel)
            futures[self._executor.submit(channel.send, delivery)] = attempt

        done, not_done = wait(futures, timeout=self.settings.send_timeout_seconds)
        for future, attempt in futures.items():
            if future in not_done:
                if future.cancel():
                    # Every worker is still busy with an earlier send; this
                    # still counts as one try of the attempt.
                    logger.warning(
                        "Send of attempt %s over %s did not start within %ss; worker pool busy",
                        attempt.id,
                        attempt.channel,
                        self.settings.send_timeout_seconds,
                    )
                    result = SendResult.retryable(
                        "Worker pool busy; send did not start within "
                        f"{self.settings.send_timeout_seconds}s"
                    )
                else:
                    logger.warning(
                        "Send of attempt %s over %s exceeded %ss",
                        attempt.id,
                        attempt.channel,
                        self.settings.send_timeout_seconds,
                    )
                    result = SendResult.retryable(
                        f"Send timed out after {self.settings.send_timeout_seconds}s"
                    )
            else:
                exc = future.exception()
                if exc is not None:
                    logger.warning("Channel %s raised for attempt %s: %s", attempt.channel, attempt.id, exc)
                    result = classify_exception(exc)
                else:
                    result = future.result()
                    if not isinstance(result, SendResult):
                        result = SendResult.permanent(
                            f"Channel {attempt.channel} returned {type(result).__name__}"
                        )
            self._apply_result(session, attempt, result, now, summary)

    def _build_deliveries(
        self,
        session: Session,
        claimed: Sequence[DeliveryAttempt],
        *,
        now: datetime,
        summary: RunSummary,
    ) -> list[tuple[DeliveryAttempt, Delivery]]:
        requests = NotificationRequestRepository(session)
        request_cache: dict[int, NotificationRequest | None] = {}
        users = UserRepository(session).get_map(attempt.recipient_id for attempt in claimed)

        deliveries: list[tuple[DeliveryAttempt, Delivery]] = []
        for attempt in claimed:
            summary.request_ids.add(attempt.request_id)
            if attempt.request_id not in request_cache:
                request_cache[attempt.request_id] = requests.get(attempt.request_id)
            request = request_cache[attempt.request_id]
            user = users.get(attempt.recipient_id)
            channel = self.channels.get(attempt.channel)

            problem: str | None = None
            if request is None:
                problem = f"Notification request {attempt.request_id} no longer exists"
            elif user is None:
                problem = f"Recipient {attempt.recipient_id} no longer exists"
            elif channel is None:
                problem = f"Channel {attempt.channel!r} is not registered"
            if problem is not None:
                self._apply_result(session, attempt, SendResult.permanent(problem), now, summary)
                continue

            deliveries.append(
                (
                    attempt,
                    Delivery(
                        attempt_id=attempt.id,
                        request_id=attempt.request_id,
                        channel=attempt.channel,
                        recipient=user,
                        title=request.title,
                        body=request.body,
                        level=attempt.level,
                        attempt_number=attempt.attempt_count + 1,
                        metadata=dict(request.metadata or {}),
                    ),
                )
            )
        return deliveries

    def _apply_result(
        self,
        session: Session,
        attempt: DeliveryAttempt,
        result: SendResult,
        now: datetime,
        summary: RunSummary,
    ) -> None:
        repository = DeliveryAttemptRepository(session)
        attempt_count = attempt.attempt_count + 1

        if result.outcome == OUTCOME_OK:
            updated = repository.transition(
                attempt.id,
                ATTEMPT_STATUS_SENT,
                expected=ATTEMPT_STATUS_IN_FLIGHT,
                attempt_count=attempt_count,
                sent_at=now,
                updated_at=now,
                next_retry_at=None,
                last_error=None,
                provider_message_id=result.provider_message_id,
            )
            counter = "sent"
        elif result.outcome == OUTCOME_RETRYABLE and attempt_count < attempt.max_attempts:
            delay = compute_backoff(
                attempt_count,
                base_seconds=self.settings.retry_base_seconds,
                max_seconds=self.settings.retry_max_seconds,
            )
            updated = repository.transition(
                attempt.id,
                ATTEMPT_STATUS_PENDING,
                expected=ATTEMPT_STATUS_IN_FLIGHT,
                attempt_count=attempt_count,
                next_retry_at=now + delay,
                updated_at=now,
                last_error=result.error,
            )
            counter = "retried"
        elif result.outcome == OUTCOME_RETRYABLE:
            updated = repository.transition(
                attempt.id,
                ATTEMPT_STATUS_EXHAUSTED,
                expected=ATTEMPT_STATUS_IN_FLIGHT,
                attempt_count=attempt_count,
                next_retry_at=None,
                updated_at=now,
                last_error=result.error,
            )
            counter = "exhausted"
        else:
            updated = repository.transition(
                attempt.id,
                ATTEMPT_STATUS_FAILED,
                expected=ATTEMPT_STATUS_IN_FLIGHT,
                attempt_count=attempt_count,
                next_retry_at=None,
                updated_at=now,
                last_error=result.error,
            )
            counter = "failed"

        if updated is None:
            logger.warning(
                "Attempt %s left in_flight before its %s result was recorded", attempt.id, counter
            )
            return
        setattr(summary, counter, getattr(summary, counter) + 1)
        logger.info(
            "Attempt %s (%s -> user %s) %s after %s send(s)%s",
            attempt.id,
            attempt.channel,
            attempt.recipient_id,
            updated.status,
            attempt_count,
            f": {result.error}" if result.error else "",
        )

    # receipts ---------------------------------------------------------

    def confirm_delivery(
        self, session: Session, attempt_id: int, *, now: datetime | None = None
    ) -> DeliveryAttempt:
        """Mark a ``sent`` attempt as ``delivered`` after a receipt or ack."""

        now = now or self.clock.now()
        repository = DeliveryAttemptRepository(session)
        attempt = repository.get(attempt_id)
        if attempt is None:
            raise NotFoundError(f"Delivery attempt {attempt_id} not found")
        if attempt.status == ATTEMPT_STATUS_DELIVERED:
            return attempt
        channel = self.channels.get(attempt.channel)
        if channel is not None and not channel.supports_confirmation:
            raise ValidationError(f"Channel {attempt.channel!r} does not report delivery")
        if attempt.status != ATTEMPT_STATUS_SENT:
            raise InvalidTransition(
                f"Delivery attempt {attempt_id} is {attempt.status} and cannot be delivered"
            )

        updated = repository.transition(
            attempt_id,
            ATTEMPT_STATUS_DELIVERED,
            expected=ATTEMPT_STATUS_SENT,
            delivered_at=now,
            updated_at=now,
        )
        if updated is None:
            return repository.get(attempt_id)
        logger.info("Attempt %s delivered", attempt_id)
        self._settle_request(session, updated.request_id, now=now)
        return updated

    def record_bounce(
        self,
        session: Session,
        attempt_id: int,
        reason: str,
        *,
        now: datetime | None = None,
    ) -> DeliveryAttempt:
        """Fail a ``sent`` attempt whose provider reported a bounce."""

        now = now or self.clock.now()
        repository = DeliveryAttemptRepository(session)
        attempt = repository.get(attempt_id)
        if attempt is None:
            raise NotFoundError(f"Delivery attempt {attempt_id} not found")
        if attempt.status == ATTEMPT_STATUS_FAILED:
            return attempt
        if attempt.status != ATTEMPT_STATUS_SENT:
            raise InvalidTransition(
                f"Delivery attempt {attempt_id} is {attempt.status} and cannot bounce"
            )

        updated = repository.transition(
            attempt_id,
            ATTEMPT_STATUS_FAILED,
            expected=ATTEMPT_STATUS_SENT,
            last_error=reason or "bounced",
            updated_at=now,
        )
        if updated is None:
            return repository.get(attempt_id)
        logger.warning("Attempt %s bounced: %s", attempt_id, reason)
        self._settle_request(session, updated.request_id, now=now)
        return updated

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # helpers ----------------------------------------------------------

    def _prepare(self, session: Session, request: NotificationRequest) -> NotificationRequest:
        """Apply the template (if any) and validate the request fields."""

        if request.template_name:
            template = get_template(session, request.template_name)
            context = dict(request.metadata or {})
            request = replace(
                request,
                title=render_template(request.title or template.title, context),
                body=render_template(request.body or template.body, context),
                channels=list(request.channels or template.channels),
            )

        title = (request.title or "").strip()
        body = (request.body or "").strip()
        if not title or not body:
            raise ValidationError("Notification title and body are required")
        if request.level not in NOTIFICATION_LEVELS:
            raise ValidationError(f"Unsupported level {request.level!r}")
        if request.frequency not in FREQUENCIES:
            raise ValidationError(f"Unsupported frequency {request.frequency!r}")
        if request.is_recurring and request.scheduled_at is None:
            raise ValidationError("Recurring notifications need a scheduled_at")

        channels = _unique(request.channels or [])
        if not channels:
            raise ValidationError("At least one channel is required")
        unsupported = [channel for channel in channels if channel not in self.channels]
        if unsupported:
            raise ValidationError(f"Unsupported channels: {', '.join(unsupported)}")

        return replace(
            request,
            title=title,
            body=body,
            channels=channels,
            scheduled_at=ensure_app_timezone(request.scheduled_at),
            recipient_ids=_unique(int(user_id) for user_id in request.recipient_ids or []),
            recipient_roles=_unique(role.strip() for role in request.recipient_roles or [] if role.strip()),
        )

    def _resolve_recipients(self, session: Session, request: NotificationRequest) -> list[User]:
        users = UserRepository(session)
        explicit = users.get_map(request.recipient_ids)
        unknown = [user_id for user_id in request.recipient_ids if user_id not in explicit]
        if unknown:
            raise ValidationError(f"Unknown recipients: {unknown}")

        recipients = {user.id: user for user in explicit.values() if user.is_active}
        role_ids = [
            user_id
            for user_id in users.list_ids_by_roles(request.recipient_roles)
            if user_id not in recipients
        ]
        recipients.update(users.get_map(role_ids))
        if not recipients:
            raise ValidationError("The request does not resolve to any recipient")
        return [recipients[user_id] for user_id in sorted(recipients)]

    def _expand(self, session: Session, request: NotificationRequest, *, now: datetime) -> None:
        """Create one pending attempt per (recipient, channel)."""

        try:
            recipients = self._resolve_recipients(session, request)
        except ValidationError as exc:
            logger.warning("Notification request %s cannot be expanded: %s", request.id, exc)
            NotificationRequestRepository(session).update_status(
                request.id, REQUEST_STATUS_FAILED, completed_at=now
            )
            return

        attempts = [
            DeliveryAttempt(
                id=None,
                request_id=request.id,
                recipient_id=recipient.id,
                channel=channel,
                level=request.level,
                max_attempts=self.settings.max_attempts,
                created_at=now,
                updated_at=now,
            )
            for recipient in recipients
            for channel in request.channels
        ]
        created = DeliveryAttemptRepository(session).create_many(attempts)
        logger.info(
            "Notification request %s expanded into %s attempt(s) (%s recipient(s) x %s channel(s))",
            request.id,
            len(created),
            len(recipients),
            len(request.channels),
        )

    def _settle_request(self, session: Session, request_id: int, *, now: datetime) -> None:
        repository = NotificationRequestRepository(session)
        request = repository.get(request_id)
        if request is None or request.status in (REQUEST_STATUS_SCHEDULED, REQUEST_STATUS_CANCELLED):
            return
        attempts = DeliveryAttemptRepository(session).list_for_request(request_id)
        outcome = aggregate_outcome(attempts, require_all_channels=request.require_all_channels)
        if outcome is None or outcome == request.status:
            return
        if request.status not in REQUEST_FINAL_STATUSES | {REQUEST_STATUS_DISPATCHING}:
            return
        repository.update_status(request_id, outcome, completed_at=now)
        logger.info("Notification request %s %s", request_id, outcome)


def _unique(values: Iterable) -> list:
    seen: set = set()
    unique: list = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        unique.append(value)
    return unique


__all__ = ["DispatchEngine", "RunSummary"]
