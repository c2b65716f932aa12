"""Persistence helpers for notification requests."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from notifyhub.domain.entities import (
    LEVEL_CRITICAL,
    REQUEST_STATUS_DISPATCHING,
    REQUEST_STATUS_SCHEDULED,
    NotificationRequest,
)
from notifyhub.domain.errors import DuplicateRequestError
from notifyhub.infrastructure.models import NotificationRequestModel
from notifyhub.utils import ensure_app_naive_datetime, ensure_app_timezone


class NotificationRequestRepository:
    """Provide CRUD operations for :class:`NotificationRequest` objects."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, request_id: int) -> NotificationRequest | None:
        model = self.session.get(NotificationRequestModel, request_id, populate_existing=True)
        return self._to_entity(model) if model else None

    def get_by_idempotency_key(self, key: str) -> NotificationRequest | None:
        model = (
            self.session.query(NotificationRequestModel).populate_existing()
            .filter(NotificationRequestModel.idempotency_key == key)
            .first()
        )
        return self._to_entity(model) if model else None

    def list(
        self, *, status: str | None = None, limit: int | None = 50
    ) -> Sequence[NotificationRequest]:
        query = self.session.query(NotificationRequestModel).populate_existing()
        if status:
            query = query.filter(NotificationRequestModel.status == status)
        query = query.order_by(NotificationRequestModel.id.desc())
        if limit is not None:
            query = query.limit(limit)
        return [self._to_entity(model) for model in query.all()]

    def create(self, request: NotificationRequest) -> NotificationRequest:
        """Insert ``request``.

        Raises :class:`DuplicateRequestError` when the idempotency key is
        already taken, including when a concurrent insert won the race.
        """

        if request.idempotency_key:
            existing = self.get_by_idempotency_key(request.idempotency_key)
            if existing is not None:
                raise DuplicateRequestError(existing.id, request.idempotency_key)

        model = NotificationRequestModel()
        self._apply_entity_to_model(model, request)
        self.session.add(model)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            if request.idempotency_key:
                existing = self.get_by_idempotency_key(request.idempotency_key)
                if existing is not None:
                    raise DuplicateRequestError(
                        existing.id, request.idempotency_key
                    ) from None
            raise
        self.session.refresh(model)
        return self._to_entity(model)

    def update_status(
        self,
        request_id: int,
        status: str,
        *,
        dispatched_at: datetime | None = None,
        completed_at: datetime | None = None,
    ) -> None:
        values: dict = {NotificationRequestModel.status: status}
        if dispatched_at is not None:
            values[NotificationRequestModel.dispatched_at] = ensure_app_naive_datetime(
                dispatched_at
            )
        if completed_at is not None:
            values[NotificationRequestModel.completed_at] = ensure_app_naive_datetime(
                completed_at
            )
        self.session.query(NotificationRequestModel).filter(
            NotificationRequestModel.id == request_id
        ).update(values, synchronize_session=False)
        self.session.commit()

    def compare_and_set_status(
        self, request_id: int, *, expected: str, new: str, at: datetime | None = None
    ) -> bool:
        """Atomically move ``request_id`` from ``expected`` to ``new``."""

        values: dict = {NotificationRequestModel.status: new}
        if new == REQUEST_STATUS_DISPATCHING and at is not None:
            values[NotificationRequestModel.dispatched_at] = ensure_app_naive_datetime(at)
        updated = (
            self.session.query(NotificationRequestModel)
            .filter(
                NotificationRequestModel.id == request_id,
                NotificationRequestModel.status == expected,
            )
            .update(values, synchronize_session=False)
        )
        self.session.commit()
        return updated == 1

    def list_due_scheduled(
        self, now: datetime, *, critical_only: bool = False, limit: int | None = 100
    ) -> Sequence[NotificationRequest]:
        """Return scheduled requests whose ``scheduled_at`` has passed."""

        query = (
            self.session.query(NotificationRequestModel).populate_existing()
            .filter(NotificationRequestModel.status == REQUEST_STATUS_SCHEDULED)
            .filter(NotificationRequestModel.scheduled_at.isnot(None))
            .filter(
                NotificationRequestModel.scheduled_at <= ensure_app_naive_datetime(now)
            )
        )
        if critical_only:
            query = query.filter(NotificationRequestModel.level == LEVEL_CRITICAL)
        query = query.order_by(
            case((NotificationRequestModel.level == LEVEL_CRITICAL, 0), else_=1),
            NotificationRequestModel.scheduled_at.asc(),
            NotificationRequestModel.id.asc(),
        )
        if limit is not None:
            query = query.limit(limit)
        return [self._to_entity(model) for model in query.all()]

    @staticmethod
    def _apply_entity_to_model(
        model: NotificationRequestModel, request: NotificationRequest
    ) -> None:
        model.idempotency_key = request.idempotency_key
        model.title = request.title
        model.body = request.body
        model.level = request.level
        model.recipient_ids = list(request.recipient_ids or [])
        model.recipient_roles = list(request.recipient_roles or [])
        model.channels = list(request.channels or [])
        model.template_name = request.template_name
        model.metadata_ = dict(request.metadata or {})
        model.require_all_channels = bool(request.require_all_channels)
        model.scheduled_at = ensure_app_naive_datetime(request.scheduled_at)
        model.frequency = request.frequency
        model.status = request.status
        if request.created_at is not None:
            model.created_at = ensure_app_naive_datetime(request.created_at)
        model.dispatched_at = ensure_app_naive_datetime(request.dispatched_at)
        model.completed_at = ensure_app_naive_datetime(request.completed_at)

    @staticmethod
    def _to_entity(model: NotificationRequestModel) -> NotificationRequest:
        return NotificationRequest(
            id=model.id,
            title=model.title,
            body=model.body,
            level=model.level,
            recipient_ids=list(model.recipient_ids or []),
            recipient_roles=list(model.recipient_roles or []),
            channels=list(model.channels or []),
            idempotency_key=model.idempotency_key,
            template_name=model.template_name,
            metadata=dict(model.metadata_ or {}),
            require_all_channels=bool(model.require_all_channels),
            scheduled_at=ensure_app_timezone(model.scheduled_at),
            frequency=model.frequency,
            status=model.status,
            created_at=ensure_app_timezone(model.created_at),
            dispatched_at=ensure_app_timezone(model.dispatched_at),
            completed_at=ensure_app_timezone(model.completed_at),
        )


__all__ = ["NotificationRequestRepository"]
