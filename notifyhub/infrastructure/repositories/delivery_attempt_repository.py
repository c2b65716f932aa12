"""Persistence helpers for delivery attempts.

Status changes go through :meth:`DeliveryAttemptRepository.transition`, an
UPDATE guarded on the current status, so a row only ever has one writer and
terminal states are never left.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import case, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from notifyhub.domain.entities import (
    ATTEMPT_STATUS_IN_FLIGHT,
    ATTEMPT_STATUS_PENDING,
    LEVEL_CRITICAL,
    DeliveryAttempt,
    can_transition,
)
from notifyhub.domain.errors import InvalidTransition
from notifyhub.infrastructure.models import DeliveryAttemptModel
from notifyhub.utils import ensure_app_naive_datetime, ensure_app_timezone

_DATETIME_FIELDS = {"next_retry_at", "sent_at", "delivered_at", "updated_at"}
_MUTABLE_FIELDS = _DATETIME_FIELDS | {
    "attempt_count",
    "last_error",
    "provider_message_id",
}


class DeliveryAttemptRepository:
    """Provide persistence operations for :class:`DeliveryAttempt` objects."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, attempt_id: int) -> DeliveryAttempt | None:
        model = self.session.get(DeliveryAttemptModel, attempt_id)
        if model is None:
            return None
        self.session.refresh(model)
        return self._to_entity(model)

    def list_for_request(self, request_id: int) -> Sequence[DeliveryAttempt]:
        query = (
            self.session.query(DeliveryAttemptModel).populate_existing()
            .filter(DeliveryAttemptModel.request_id == request_id)
            .order_by(DeliveryAttemptModel.id.asc())
        )
        return [self._to_entity(model) for model in query.all()]

    def find_id_by_provider_message_id(self, provider_message_id: str) -> int | None:
        row = (
            self.session.query(DeliveryAttemptModel.id)
            .filter(DeliveryAttemptModel.provider_message_id == provider_message_id)
            .first()
        )
        return row[0] if row else None

    def create_many(self, attempts: Iterable[DeliveryAttempt]) -> list[DeliveryAttempt]:
        """Insert the attempts that do not exist yet and return the new rows."""

        attempts = list(attempts)
        if not attempts:
            return []
        request_ids = {attempt.request_id for attempt in attempts}
        existing = {
            (request_id, recipient_id, channel)
            for request_id, recipient_id, channel in self.session.query(
                DeliveryAttemptModel.request_id,
                DeliveryAttemptModel.recipient_id,
                DeliveryAttemptModel.channel,
            ).filter(DeliveryAttemptModel.request_id.in_(request_ids))
        }
        models: list[DeliveryAttemptModel] = []
        for attempt in attempts:
            key = (attempt.request_id, attempt.recipient_id, attempt.channel)
            if key in existing:
                continue
            existing.add(key)
            model = DeliveryAttemptModel()
            self._apply_entity_to_model(model, attempt)
            models.append(model)
        if not models:
            return []
        self.session.add_all(models)
        try:
            self.session.commit()
        except IntegrityError:
            # A concurrent expansion inserted the same targets first.
            self.session.rollback()
            return []
        for model in models:
            self.session.refresh(model)
        return [self._to_entity(model) for model in models]

    def count_backlog(self) -> int:
        """Number of attempts still waiting for (or inside) a send."""

        return (
            self.session.query(func.count(DeliveryAttemptModel.id))
            .filter(
                DeliveryAttemptModel.status.in_(
                    (ATTEMPT_STATUS_PENDING, ATTEMPT_STATUS_IN_FLIGHT)
                )
            )
            .scalar()
            or 0
        )

    def list_due_ids(
        self, now: datetime, *, critical_only: bool = False, limit: int | None = 100
    ) -> list[int]:
        """Return ids of pending attempts whose retry time has come, critical first."""

        naive_now = ensure_app_naive_datetime(now)
        query = (
            self.session.query(DeliveryAttemptModel.id)
            .filter(DeliveryAttemptModel.status == ATTEMPT_STATUS_PENDING)
            .filter(
                or_(
                    DeliveryAttemptModel.next_retry_at.is_(None),
                    DeliveryAttemptModel.next_retry_at <= naive_now,
                )
            )
        )
        if critical_only:
            query = query.filter(DeliveryAttemptModel.level == LEVEL_CRITICAL)
        query = query.order_by(
            case((DeliveryAttemptModel.level == LEVEL_CRITICAL, 0), else_=1),
            DeliveryAttemptModel.id.asc(),
        )
        if limit is not None:
            query = query.limit(limit)
        return [attempt_id for (attempt_id,) in query.all()]

    def claim(self, attempt_id: int, *, now: datetime) -> DeliveryAttempt | None:
        """Compare-and-set ``pending -> in_flight``; ``None`` if someone else won."""

        return self.transition(
            attempt_id,
            ATTEMPT_STATUS_IN_FLIGHT,
            expected=ATTEMPT_STATUS_PENDING,
            updated_at=now,
        )

    def transition(
        self,
        attempt_id: int,
        new_status: str,
        *,
        expected: str,
        **fields: Any,
    ) -> DeliveryAttempt | None:
        """Move ``attempt_id`` from ``expected`` to ``new_status``.

        Returns the updated attempt, or ``None`` when the row is no longer in
        ``expected`` (another writer moved it first).
        """

        if not can_transition(expected, new_status):
            raise InvalidTransition(
                f"Delivery attempt {attempt_id} cannot move from {expected} to {new_status}"
            )
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported delivery attempt fields: {sorted(unknown)}")

        values: dict[Any, Any] = {DeliveryAttemptModel.status: new_status}
        for name, value in fields.items():
            if name in _DATETIME_FIELDS:
                value = ensure_app_naive_datetime(value)
            values[getattr(DeliveryAttemptModel, name)] = value

        updated = (
            self.session.query(DeliveryAttemptModel)
            .filter(
                DeliveryAttemptModel.id == attempt_id,
                DeliveryAttemptModel.status == expected,
            )
            .update(values, synchronize_session=False)
        )
        self.session.commit()
        if updated != 1:
            return None
        return self.get(attempt_id)

    def requeue_stale_in_flight(self, older_than: datetime) -> int:
        """Return attempts stuck ``in_flight`` (e.g. after a crash) to ``pending``."""

        updated = (
            self.session.query(DeliveryAttemptModel)
            .filter(DeliveryAttemptModel.status == ATTEMPT_STATUS_IN_FLIGHT)
            .filter(DeliveryAttemptModel.updated_at < ensure_app_naive_datetime(older_than))
            .update(
                {DeliveryAttemptModel.status: ATTEMPT_STATUS_PENDING},
                synchronize_session=False,
            )
        )
        self.session.commit()
        return updated

    @staticmethod
    def _apply_entity_to_model(model: DeliveryAttemptModel, attempt: DeliveryAttempt) -> None:
        model.request_id = attempt.request_id
        model.recipient_id = attempt.recipient_id
        model.channel = attempt.channel
        model.level = attempt.level
        model.status = attempt.status
        model.attempt_count = attempt.attempt_count
        model.max_attempts = attempt.max_attempts
        model.last_error = attempt.last_error
        model.next_retry_at = ensure_app_naive_datetime(attempt.next_retry_at)
        model.provider_message_id = attempt.provider_message_id
        if attempt.created_at is not None:
            model.created_at = ensure_app_naive_datetime(attempt.created_at)
        if attempt.updated_at is not None:
            model.updated_at = ensure_app_naive_datetime(attempt.updated_at)
        model.sent_at = ensure_app_naive_datetime(attempt.sent_at)
        model.delivered_at = ensure_app_naive_datetime(attempt.delivered_at)

    @staticmethod
    def _to_entity(model: DeliveryAttemptModel) -> DeliveryAttempt:
        return DeliveryAttempt(
            id=model.id,
            request_id=model.request_id,
            recipient_id=model.recipient_id,
            channel=model.channel,
            level=model.level,
            status=model.status,
            attempt_count=model.attempt_count,
            max_attempts=model.max_attempts,
            last_error=model.last_error,
            next_retry_at=ensure_app_timezone(model.next_retry_at),
            provider_message_id=model.provider_message_id,
            created_at=ensure_app_timezone(model.created_at),
            updated_at=ensure_app_timezone(model.updated_at),
            sent_at=ensure_app_timezone(model.sent_at),
            delivered_at=ensure_app_timezone(model.delivered_at),
        )


__all__ = ["DeliveryAttemptRepository"]
