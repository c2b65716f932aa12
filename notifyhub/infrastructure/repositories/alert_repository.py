"""Persistence helpers for alert rules and raised alerts."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy.orm import Session

from notifyhub.domain.entities import (
    ALERT_STATUS_OPEN,
    ALERT_STATUS_RESOLVED,
    Alert,
    AlertRule,
)
from notifyhub.infrastructure.models import AlertModel, AlertRuleModel
from notifyhub.utils import ensure_app_naive_datetime, ensure_app_timezone


class AlertRuleRepository:
    """Provide CRUD operations for :class:`AlertRule` objects."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def list(self, *, active_only: bool = False) -> Sequence[AlertRule]:
        query = self.session.query(AlertRuleModel)
        if active_only:
            query = query.filter(AlertRuleModel.is_active.is_(True))
        return [self._to_entity(model) for model in query.order_by(AlertRuleModel.id).all()]

    def get_by_name(self, name: str) -> AlertRule | None:
        model = (
            self.session.query(AlertRuleModel).filter(AlertRuleModel.name == name).first()
        )
        return self._to_entity(model) if model else None

    def create(self, rule: AlertRule) -> AlertRule:
        model = AlertRuleModel(
            name=rule.name,
            kind=rule.kind,
            metric=rule.metric,
            comparison=rule.comparison,
            threshold=rule.threshold,
            window_seconds=rule.window_seconds,
            severity=rule.severity,
            per_gateway=rule.per_gateway,
            is_active=rule.is_active,
        )
        self.session.add(model)
        self.session.commit()
        self.session.refresh(model)
        return self._to_entity(model)

    @staticmethod
    def _to_entity(model: AlertRuleModel) -> AlertRule:
        return AlertRule(
            id=model.id,
            name=model.name,
            kind=model.kind,
            metric=model.metric,
            comparison=model.comparison,
            threshold=model.threshold,
            window_seconds=model.window_seconds,
            severity=model.severity,
            per_gateway=bool(model.per_gateway),
            is_active=bool(model.is_active),
        )


class AlertRepository:
    """Provide persistence operations for :class:`Alert` objects."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, alert_id: int) -> Alert | None:
        model = self.session.get(AlertModel, alert_id, populate_existing=True)
        return self._to_entity(model) if model else None

    def list(self, *, status: str | None = None, limit: int | None = 100) -> Sequence[Alert]:
        query = self.session.query(AlertModel).populate_existing()
        if status:
            query = query.filter(AlertModel.status == status)
        query = query.order_by(AlertModel.triggered_at.desc(), AlertModel.id.desc())
        if limit is not None:
            query = query.limit(limit)
        return [self._to_entity(model) for model in query.all()]

    def list_open(self) -> Sequence[Alert]:
        return self.list(status=ALERT_STATUS_OPEN, limit=None)

    def create(self, alert: Alert) -> Alert:
        model = AlertModel(
            rule_id=alert.rule_id,
            kind=alert.kind,
            gateway=alert.gateway,
            severity=alert.severity,
            message=alert.message,
            payload=alert.payload or {},
            status=alert.status,
            triggered_at=ensure_app_naive_datetime(alert.triggered_at),
            resolved_at=ensure_app_naive_datetime(alert.resolved_at),
            notification_request_id=alert.notification_request_id,
        )
        self.session.add(model)
        self.session.commit()
        self.session.refresh(model)
        return self._to_entity(model)

    def refresh_open(
        self, alert_id: int, *, triggered_at: datetime, message: str, payload: dict
    ) -> None:
        """Update the details of an alert that is still open."""

        self.session.query(AlertModel).filter(
            AlertModel.id == alert_id, AlertModel.status == ALERT_STATUS_OPEN
        ).update(
            {
                AlertModel.triggered_at: ensure_app_naive_datetime(triggered_at),
                AlertModel.message: message,
                AlertModel.payload: payload,
            },
            synchronize_session=False,
        )
        self.session.commit()

    def resolve(self, alert_id: int, *, resolved_at: datetime) -> bool:
        updated = (
            self.session.query(AlertModel)
            .filter(AlertModel.id == alert_id, AlertModel.status == ALERT_STATUS_OPEN)
            .update(
                {
                    AlertModel.status: ALERT_STATUS_RESOLVED,
                    AlertModel.resolved_at: ensure_app_naive_datetime(resolved_at),
                },
                synchronize_session=False,
            )
        )
        self.session.commit()
        return updated == 1

    def attach_notification(self, alert_id: int, request_id: int) -> None:
        self.session.query(AlertModel).filter(AlertModel.id == alert_id).update(
            {AlertModel.notification_request_id: request_id}, synchronize_session=False
        )
        self.session.commit()

    @staticmethod
    def _to_entity(model: AlertModel) -> Alert:
        return Alert(
            id=model.id,
            rule_id=model.rule_id,
            kind=model.kind,
            gateway=model.gateway,
            severity=model.severity,
            message=model.message,
            payload=model.payload or {},
            status=model.status,
            triggered_at=ensure_app_timezone(model.triggered_at),
            resolved_at=ensure_app_timezone(model.resolved_at),
            notification_request_id=model.notification_request_id,
        )


__all__ = ["AlertRepository", "AlertRuleRepository"]
