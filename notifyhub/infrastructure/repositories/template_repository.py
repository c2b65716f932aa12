"""Persistence helpers for notification templates and triggers."""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from notifyhub.domain.entities import NotificationTemplate, NotificationTrigger
from notifyhub.domain.errors import ValidationError
from notifyhub.infrastructure.models import (
    NotificationTemplateModel,
    NotificationTriggerModel,
)


class NotificationTemplateRepository:
    """Provide CRUD operations for :class:`NotificationTemplate` objects."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, template_id: int) -> NotificationTemplate | None:
        model = self.session.get(NotificationTemplateModel, template_id)
        return self._to_entity(model) if model else None

    def get_by_name(self, name: str) -> NotificationTemplate | None:
        model = (
            self.session.query(NotificationTemplateModel)
            .filter(NotificationTemplateModel.name == name)
            .first()
        )
        return self._to_entity(model) if model else None

    def list(self) -> Sequence[NotificationTemplate]:
        query = self.session.query(NotificationTemplateModel).order_by(
            NotificationTemplateModel.name
        )
        return [self._to_entity(model) for model in query.all()]

    def create(self, template: NotificationTemplate) -> NotificationTemplate:
        model = NotificationTemplateModel(
            name=template.name,
            title=template.title,
            body=template.body,
            level=template.level,
            channels=list(template.channels),
            is_active=template.is_active,
        )
        self.session.add(model)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValidationError(f"Template {template.name!r} already exists") from exc
        self.session.refresh(model)
        return self._to_entity(model)

    @staticmethod
    def _to_entity(model: NotificationTemplateModel) -> NotificationTemplate:
        return NotificationTemplate(
            id=model.id,
            name=model.name,
            title=model.title,
            body=model.body,
            level=model.level,
            channels=list(model.channels or []),
            is_active=bool(model.is_active),
        )


class NotificationTriggerRepository:
    """Provide CRUD operations for :class:`NotificationTrigger` objects."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def list_for_event(self, event: str) -> Sequence[NotificationTrigger]:
        query = (
            self.session.query(NotificationTriggerModel)
            .filter(NotificationTriggerModel.event == event)
            .filter(NotificationTriggerModel.is_active.is_(True))
            .order_by(NotificationTriggerModel.id)
        )
        return [self._to_entity(model) for model in query.all()]

    def create(self, trigger: NotificationTrigger) -> NotificationTrigger:
        model = NotificationTriggerModel(
            name=trigger.name,
            event=trigger.event,
            template_id=trigger.template_id,
            conditions=dict(trigger.conditions or {}),
            recipient_ids=list(trigger.recipient_ids),
            recipient_roles=list(trigger.recipient_roles),
            channels=list(trigger.channels),
            is_active=trigger.is_active,
        )
        self.session.add(model)
        self.session.commit()
        self.session.refresh(model)
        return self._to_entity(model)

    @staticmethod
    def _to_entity(model: NotificationTriggerModel) -> NotificationTrigger:
        return NotificationTrigger(
            id=model.id,
            name=model.name,
            event=model.event,
            template_id=model.template_id,
            conditions=dict(model.conditions or {}),
            recipient_ids=[int(value) for value in model.recipient_ids or []],
            recipient_roles=list(model.recipient_roles or []),
            channels=list(model.channels or []),
            is_active=bool(model.is_active),
        )


__all__ = ["NotificationTemplateRepository", "NotificationTriggerRepository"]
