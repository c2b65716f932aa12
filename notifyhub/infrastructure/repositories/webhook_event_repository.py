"""Persistence helpers for webhook events and the queries behind monitoring."""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from notifyhub.domain.entities import (
    WEBHOOK_STATUS_FAILED,
    WEBHOOK_STATUS_PENDING,
    WEBHOOK_STATUS_PROCESSED,
    WebhookEvent,
)
from notifyhub.infrastructure.models import WebhookEventModel
from notifyhub.utils import ensure_app_naive_datetime, ensure_app_timezone


@dataclass
class GatewayCounts:
    """Raw per-gateway counters for a time window."""

    gateway: str
    total: int = 0
    processed: int = 0
    failed: int = 0
    pending: int = 0


class WebhookEventRepository:
    """Provide persistence operations for :class:`WebhookEvent` objects."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, event_id: int) -> WebhookEvent | None:
        model = self.session.get(WebhookEventModel, event_id)
        if model is None:
            return None
        self.session.refresh(model)
        return self._to_entity(model)

    def get_by_dedup_key(self, gateway: str, external_event_id: str) -> WebhookEvent | None:
        model = (
            self.session.query(WebhookEventModel).populate_existing()
            .filter(WebhookEventModel.gateway == gateway)
            .filter(WebhookEventModel.external_event_id == external_event_id)
            .first()
        )
        return self._to_entity(model) if model else None

    def create(self, event: WebhookEvent) -> WebhookEvent | None:
        """Insert ``event``; ``None`` when its dedup key already exists."""

        model = WebhookEventModel()
        self._apply_entity_to_model(model, event)
        self.session.add(model)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            return None
        self.session.refresh(model)
        return self._to_entity(model)

    def mark_processed(
        self, event_id: int, *, processed_at: datetime, attempt_id: int | None = None
    ) -> None:
        values: dict = {
            WebhookEventModel.status: WEBHOOK_STATUS_PROCESSED,
            WebhookEventModel.processed_at: ensure_app_naive_datetime(processed_at),
            WebhookEventModel.error_message: None,
        }
        if attempt_id is not None:
            values[WebhookEventModel.attempt_id] = attempt_id
        self._update(event_id, values)

    def mark_failed(
        self, event_id: int, *, error_message: str, attempt_id: int | None = None
    ) -> None:
        values: dict = {
            WebhookEventModel.status: WEBHOOK_STATUS_FAILED,
            WebhookEventModel.error_message: error_message[:2000],
        }
        if attempt_id is not None:
            values[WebhookEventModel.attempt_id] = attempt_id
        self._update(event_id, values)

    def claim_failed(self, event_id: int) -> bool:
        """Compare-and-set ``failed -> pending`` so one caller reprocesses it."""

        updated = (
            self.session.query(WebhookEventModel)
            .filter(
                WebhookEventModel.id == event_id,
                WebhookEventModel.status == WEBHOOK_STATUS_FAILED,
            )
            .update(
                {WebhookEventModel.status: WEBHOOK_STATUS_PENDING},
                synchronize_session=False,
            )
        )
        self.session.commit()
        return updated == 1

    def claim_stale_pending(
        self, event_id: int, *, received_before: datetime, now: datetime
    ) -> bool:
        """Take over a ``pending`` row whose ingest died before finishing.

        ``received_at`` is moved to ``now`` in the same guarded UPDATE, so a
        second caller racing on the same row no longer matches.
        """

        updated = (
            self.session.query(WebhookEventModel)
            .filter(
                WebhookEventModel.id == event_id,
                WebhookEventModel.status == WEBHOOK_STATUS_PENDING,
                WebhookEventModel.received_at < ensure_app_naive_datetime(received_before),
            )
            .update(
                {WebhookEventModel.received_at: ensure_app_naive_datetime(now)},
                synchronize_session=False,
            )
        )
        self.session.commit()
        return updated == 1

    def list(
        self,
        *,
        status: str | None = None,
        gateway: str | None = None,
        limit: int | None = 50,
    ) -> Sequence[WebhookEvent]:
        query = self.session.query(WebhookEventModel).populate_existing()
        if status:
            query = query.filter(WebhookEventModel.status == status)
        if gateway:
            query = query.filter(WebhookEventModel.gateway == gateway)
        query = query.order_by(
            WebhookEventModel.received_at.desc(), WebhookEventModel.id.desc()
        )
        if limit is not None:
            query = query.limit(limit)
        return [self._to_entity(model) for model in query.all()]

    def counts_by_gateway(self, since: datetime | None = None) -> dict[str, GatewayCounts]:
        """Return per-gateway status counters for events received since ``since``."""

        query = self.session.query(
            WebhookEventModel.gateway,
            WebhookEventModel.status,
            func.count(WebhookEventModel.id),
        )
        if since is not None:
            query = query.filter(
                WebhookEventModel.received_at >= ensure_app_naive_datetime(since)
            )
        counts: dict[str, GatewayCounts] = {}
        for gateway, status, count in query.group_by(
            WebhookEventModel.gateway, WebhookEventModel.status
        ):
            entry = counts.setdefault(gateway, GatewayCounts(gateway=gateway))
            entry.total += count
            if status == WEBHOOK_STATUS_PROCESSED:
                entry.processed += count
            elif status == WEBHOOK_STATUS_FAILED:
                entry.failed += count
            elif status == WEBHOOK_STATUS_PENDING:
                entry.pending += count
        return counts

    def processing_seconds_by_gateway(self, since: datetime) -> dict[str, list[float]]:
        """Return received->processed latencies of processed events per gateway."""

        query = (
            self.session.query(
                WebhookEventModel.gateway,
                WebhookEventModel.received_at,
                WebhookEventModel.processed_at,
            )
            .filter(WebhookEventModel.status == WEBHOOK_STATUS_PROCESSED)
            .filter(WebhookEventModel.processed_at.isnot(None))
            .filter(WebhookEventModel.received_at >= ensure_app_naive_datetime(since))
        )
        latencies: dict[str, list[float]] = defaultdict(list)
        for gateway, received_at, processed_at in query.all():
            latencies[gateway].append(max((processed_at - received_at).total_seconds(), 0.0))
        return dict(latencies)

    def stuck_pending_by_gateway(self, older_than: datetime) -> dict[str, int]:
        query = (
            self.session.query(WebhookEventModel.gateway, func.count(WebhookEventModel.id))
            .filter(WebhookEventModel.status == WEBHOOK_STATUS_PENDING)
            .filter(WebhookEventModel.received_at < ensure_app_naive_datetime(older_than))
            .group_by(WebhookEventModel.gateway)
        )
        return {gateway: count for gateway, count in query.all()}

    def last_received_by_gateway(self) -> dict[str, datetime]:
        query = self.session.query(
            WebhookEventModel.gateway, func.max(WebhookEventModel.received_at)
        ).group_by(WebhookEventModel.gateway)
        return {
            gateway: ensure_app_timezone(received_at)
            for gateway, received_at in query.all()
            if received_at is not None
        }

    def count_since(self, since: datetime) -> int:
        return (
            self.session.query(func.count(WebhookEventModel.id))
            .filter(WebhookEventModel.received_at >= ensure_app_naive_datetime(since))
            .scalar()
            or 0
        )

    def peak_hour_count(self, since: datetime) -> int:
        """Largest number of events received within one clock hour since ``since``."""

        query = self.session.query(WebhookEventModel.received_at).filter(
            WebhookEventModel.received_at >= ensure_app_naive_datetime(since)
        )
        buckets = Counter(
            received_at.replace(minute=0, second=0, microsecond=0)
            for (received_at,) in query.all()
        )
        return max(buckets.values(), default=0)

    def _update(self, event_id: int, values: dict) -> None:
        self.session.query(WebhookEventModel).filter(WebhookEventModel.id == event_id).update(
            values, synchronize_session=False
        )
        self.session.commit()

    @staticmethod
    def _apply_entity_to_model(model: WebhookEventModel, event: WebhookEvent) -> None:
        model.gateway = event.gateway
        model.external_event_id = event.external_event_id
        model.event_type = event.event_type
        model.payload = event.payload or {}
        model.raw_body = event.raw_body
        model.status = event.status
        if event.received_at is not None:
            model.received_at = ensure_app_naive_datetime(event.received_at)
        model.processed_at = ensure_app_naive_datetime(event.processed_at)
        model.error_message = event.error_message
        model.attempt_id = event.attempt_id

    @staticmethod
    def _to_entity(model: WebhookEventModel) -> WebhookEvent:
        return WebhookEvent(
            id=model.id,
            gateway=model.gateway,
            external_event_id=model.external_event_id,
            event_type=model.event_type,
            payload=model.payload or {},
            raw_body=model.raw_body,
            status=model.status,
            received_at=ensure_app_timezone(model.received_at),
            processed_at=ensure_app_timezone(model.processed_at),
            error_message=model.error_message,
            attempt_id=model.attempt_id,
        )


__all__ = ["GatewayCounts", "WebhookEventRepository"]
