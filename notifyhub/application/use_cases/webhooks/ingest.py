"""Webhook ingest: verify, deduplicate, persist and apply gateway callbacks."""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from notifyhub.config import Settings, get_settings
from notifyhub.domain.entities import (
    WEBHOOK_STATUS_FAILED,
    WEBHOOK_STATUS_PENDING,
    WEBHOOK_STATUS_PROCESSED,
    WebhookEvent,
)
from notifyhub.domain.errors import (
    MalformedPayload,
    NotFoundError,
    SignatureInvalid,
    ValidationError,
)
from notifyhub.infrastructure.gateways import GatewayAdapter, build_gateway_adapters
from notifyhub.infrastructure.repositories import WebhookEventRepository
from notifyhub.utils import Clock, SystemClock

from .handlers import WebhookHandlerRegistry

logger = logging.getLogger(__name__)

ACK_PROCESSED = "processed"
ACK_FAILED = "failed"
ACK_IN_PROGRESS = "in_progress"


@dataclass(frozen=True)
class AckResult:
    """What the receiver tells the gateway; every outcome here is a 200.

    ``duplicate`` is set when the delivery matched an event already stored
    and nothing was run for it; ``outcome`` then repeats the stored result.
    """

    outcome: str
    gateway: str
    external_event_id: str
    event_id: int | None = None
    event_type: str | None = None
    event_status: str | None = None
    error: str | None = None
    duplicate: bool = False


class WebhookIngestService:
    """Receive gateway webhooks exactly once per (gateway, external event id)."""

    def __init__(
        self,
        handlers: WebhookHandlerRegistry,
        settings: Settings | None = None,
        *,
        adapters: Mapping[str, GatewayAdapter] | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.handlers = handlers
        self.adapters = dict(
            adapters
            or build_gateway_adapters(self.settings.stripe_signature_tolerance_seconds)
        )
        self.clock = clock or SystemClock()

    def ingest(
        self,
        session: Session,
        gateway: str,
        raw_body: bytes,
        headers: Mapping[str, str],
        *,
        now: datetime | None = None,
    ) -> AckResult:
        """Verify and process one webhook delivery.

        Raises :class:`NotFoundError` for unknown gateways and
        :class:`SignatureInvalid` when the signature does not check out; in
        both cases nothing is stored.
        """

        received_at = now or self.clock.now()
        adapter = self.adapters.get(gateway)
        if adapter is None:
            raise NotFoundError(f"Unknown webhook gateway {gateway!r}")

        secret = self.settings.webhook_secrets.get(gateway)
        if not secret:
            logger.warning("No webhook secret configured for %s; rejecting delivery", gateway)
            raise SignatureInvalid(f"No signing secret configured for {gateway}")
        try:
            adapter.verify(raw_body, headers, secret, now=received_at)
        except SignatureInvalid as exc:
            logger.warning("Rejected %s webhook: %s", gateway, exc)
            raise

        repository = WebhookEventRepository(session)
        try:
            parsed = adapter.parse(raw_body)
        except MalformedPayload as exc:
            return self._store_malformed(repository, gateway, raw_body, exc, received_at)

        existing = repository.get_by_dedup_key(gateway, parsed.external_event_id)
        if existing is not None:
            event = self._reclaim(repository, existing, received_at)
            if event is None:
                return self._ack_existing(existing)
        else:
            event = repository.create(
                WebhookEvent(
                    id=None,
                    gateway=gateway,
                    external_event_id=parsed.external_event_id,
                    event_type=parsed.event_type,
                    payload=parsed.payload,
                    raw_body=raw_body.decode("utf-8", errors="replace"),
                    status=WEBHOOK_STATUS_PENDING,
                    received_at=received_at,
                )
            )
            if event is None:
                # A concurrent delivery of the same event inserted first.
                winner = repository.get_by_dedup_key(gateway, parsed.external_event_id)
                return self._ack_existing(winner) if winner else AckResult(
                    outcome=ACK_IN_PROGRESS,
                    gateway=gateway,
                    external_event_id=parsed.external_event_id,
                    event_type=parsed.event_type,
                    duplicate=True,
                )

        return self._process(session, event, now=now)

    def reprocess(
        self, session: Session, event_id: int, *, now: datetime | None = None
    ) -> AckResult:
        """Run the handler again for a ``failed`` event or a stuck ``pending`` one."""

        current = now or self.clock.now()
        repository = WebhookEventRepository(session)
        event = repository.get(event_id)
        if event is None:
            raise NotFoundError(f"Webhook event {event_id} not found")
        if event.status == WEBHOOK_STATUS_PENDING and not self._is_stuck(event, current):
            raise ValidationError(f"Webhook event {event_id} is already being processed")
        if event.status not in (WEBHOOK_STATUS_FAILED, WEBHOOK_STATUS_PENDING):
            raise ValidationError(
                f"Webhook event {event_id} is {event.status}; only failed or stuck events "
                "can be reprocessed"
            )
        if event.external_event_id.startswith("malformed-"):
            raise ValidationError(f"Webhook event {event_id} has no parseable payload")
        if self._reclaim(repository, event, current) is None:
            raise ValidationError(f"Webhook event {event_id} is already being reprocessed")
        return self._process(session, repository.get(event_id), now=now)

    def list_events(
        self,
        session: Session,
        *,
        status: str | None = None,
        gateway: str | None = None,
        limit: int = 50,
    ) -> Sequence[WebhookEvent]:
        return WebhookEventRepository(session).list(status=status, gateway=gateway, limit=limit)

    def _process(
        self, session: Session, event: WebhookEvent, *, now: datetime | None
    ) -> AckResult:
        repository = WebhookEventRepository(session)
        handler = self.handlers.resolve(event.gateway, event.event_type)
        try:
            attempt_id = handler(session, event) if handler is not None else None
        except Exception as exc:
            # Domain failures are parked for manual review; the gateway's
            # own redelivery is the retry mechanism.
            session.rollback()
            message = f"{type(exc).__name__}: {exc}"
            repository.mark_failed(event.id, error_message=message)
            logger.exception(
                "Webhook %s %s (%s) failed", event.gateway, event.event_type, event.external_event_id
            )
            return AckResult(
                outcome=ACK_FAILED,
                gateway=event.gateway,
                external_event_id=event.external_event_id,
                event_id=event.id,
                event_type=event.event_type,
                event_status=WEBHOOK_STATUS_FAILED,
                error=message,
            )

        if handler is None:
            logger.info("Unhandled %s webhook type: %s", event.gateway, event.event_type)
        repository.mark_processed(
            event.id, processed_at=now or self.clock.now(), attempt_id=attempt_id
        )
        logger.info(
            "Webhook %s %s (%s) processed", event.gateway, event.event_type, event.external_event_id
        )
        return AckResult(
            outcome=ACK_PROCESSED,
            gateway=event.gateway,
            external_event_id=event.external_event_id,
            event_id=event.id,
            event_type=event.event_type,
            event_status=WEBHOOK_STATUS_PROCESSED,
        )

    def _is_stuck(self, event: WebhookEvent, now: datetime) -> bool:
        stuck_after = timedelta(minutes=self.settings.stuck_pending_minutes)
        return event.received_at is not None and event.received_at < now - stuck_after

    def _reclaim(
        self, repository: WebhookEventRepository, existing: WebhookEvent, now: datetime
    ) -> WebhookEvent | None:
        """Return the event to process again, or ``None`` when there is nothing to do.

        ``failed`` rows are re-claimed for the replay. A ``pending`` row older
        than ``stuck_pending_minutes`` belonged to an ingest that never
        finished and is taken over the same way; a fresh one is left alone.
        """

        if existing.external_event_id.startswith("malformed-"):
            return None
        if existing.status == WEBHOOK_STATUS_FAILED:
            if not repository.claim_failed(existing.id):
                return None
        elif existing.status == WEBHOOK_STATUS_PENDING and self._is_stuck(existing, now):
            stuck_after = timedelta(minutes=self.settings.stuck_pending_minutes)
            if not repository.claim_stale_pending(
                existing.id, received_before=now - stuck_after, now=now
            ):
                return None
        else:
            return None
        logger.info(
            "Replay of %s %s webhook %s; processing again",
            existing.status,
            existing.gateway,
            existing.external_event_id,
        )
        return repository.get(existing.id)

    @staticmethod
    def _ack_existing(existing: WebhookEvent) -> AckResult:
        outcome = ACK_IN_PROGRESS if existing.status == WEBHOOK_STATUS_PENDING else existing.status
        logger.info(
            "Webhook %s %s (%s) already %s",
            existing.gateway,
            existing.event_type,
            existing.external_event_id,
            existing.status,
        )
        return AckResult(
            outcome=outcome,
            gateway=existing.gateway,
            external_event_id=existing.external_event_id,
            event_id=existing.id,
            event_type=existing.event_type,
            event_status=existing.status,
            error=existing.error_message,
            duplicate=True,
        )

    @staticmethod
    def _store_malformed(
        repository: WebhookEventRepository,
        gateway: str,
        raw_body: bytes,
        exc: MalformedPayload,
        received_at: datetime,
    ) -> AckResult:
        external_event_id = f"malformed-{hashlib.sha256(raw_body).hexdigest()}"
        existing = repository.get_by_dedup_key(gateway, external_event_id)
        duplicate = existing is not None
        if existing is None:
            existing = repository.create(
                WebhookEvent(
                    id=None,
                    gateway=gateway,
                    external_event_id=external_event_id,
                    event_type="malformed",
                    payload={},
                    raw_body=raw_body.decode("utf-8", errors="replace"),
                    status=WEBHOOK_STATUS_FAILED,
                    received_at=received_at,
                    error_message=str(exc),
                )
            )
            logger.warning("Malformed %s webhook stored as failed: %s", gateway, exc)
        if existing is None:
            existing = repository.get_by_dedup_key(gateway, external_event_id)
        return AckResult(
            outcome=ACK_FAILED,
            gateway=gateway,
            external_event_id=external_event_id,
            event_id=existing.id if existing else None,
            event_type="malformed",
            event_status=WEBHOOK_STATUS_FAILED,
            error=str(exc),
            duplicate=duplicate,
        )


__all__ = [
    "ACK_FAILED",
    "ACK_IN_PROGRESS",
    "ACK_PROCESSED",
    "AckResult",
    "WebhookIngestService",
]
