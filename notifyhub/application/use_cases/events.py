"""Normalize domain events and alerts into notification requests."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy.orm import Session

from notifyhub.domain.entities import (
    LEVEL_CRITICAL,
    LEVEL_WARNING,
    SEVERITY_CRITICAL,
    Alert,
    NotificationRequest,
)
from notifyhub.infrastructure.repositories import (
    NotificationTemplateRepository,
    NotificationTriggerRepository,
)

from .templates import render_template

logger = logging.getLogger(__name__)


def from_domain_event(
    session: Session, event_name: str, data: dict[str, Any]
) -> list[NotificationRequest]:
    """Build one request per active trigger of ``event_name`` matching ``data``.

    When ``data`` carries an ``event_id`` the requests get an idempotency
    key, so replaying the same domain event notifies nobody twice.
    """

    templates = NotificationTemplateRepository(session)
    requests: list[NotificationRequest] = []
    for trigger in NotificationTriggerRepository(session).list_for_event(event_name):
        if not trigger.applies_to(data):
            continue
        template = templates.get(trigger.template_id)
        if template is None or not template.is_active:
            logger.warning(
                "Trigger %s references missing or inactive template %s",
                trigger.name,
                trigger.template_id,
            )
            continue

        recipient_ids = list(trigger.recipient_ids)
        user_id = data.get("user_id")
        if not recipient_ids and not trigger.recipient_roles and user_id is not None:
            recipient_ids = [int(user_id)]

        event_id = data.get("event_id")
        requests.append(
            NotificationRequest(
                id=None,
                title=render_template(template.title, data),
                body=render_template(template.body, data),
                level=template.level,
                recipient_ids=recipient_ids,
                recipient_roles=list(trigger.recipient_roles),
                channels=list(trigger.channels or template.channels),
                idempotency_key=f"event:{event_name}:{event_id}:{trigger.id}"
                if event_id is not None
                else None,
                template_name=template.name,
                metadata={"event": event_name, "trigger": trigger.name, **data},
            )
        )
    return requests


def from_alert(
    alert: Alert, admin_ids: Iterable[int], channels: Iterable[str]
) -> NotificationRequest:
    """Alerts are notifications too: address ``alert`` to the operators."""

    scope = f" ({alert.gateway})" if alert.gateway else ""
    return NotificationRequest(
        id=None,
        title=f"[{alert.severity.upper()}] Webhook alert: {alert.kind}{scope}",
        body=alert.message,
        level=LEVEL_CRITICAL if alert.severity == SEVERITY_CRITICAL else LEVEL_WARNING,
        recipient_ids=sorted(set(admin_ids)),
        channels=list(channels),
        idempotency_key=f"alert:{alert.id}",
        metadata={
            "event_type": "webhook-alert",
            "alert_id": alert.id,
            "kind": alert.kind,
            "gateway": alert.gateway,
        },
    )


def dispatch_domain_event(
    session: Session,
    engine: Any,
    event_name: str,
    data: dict[str, Any],
) -> list[int]:
    """Submit the requests produced by ``event_name`` and return their ids."""

    request_ids = [
        engine.submit(session, request) for request in from_domain_event(session, event_name, data)
    ]
    logger.info("Domain event %s produced %s request(s)", event_name, len(request_ids))
    return request_ids


__all__ = ["dispatch_domain_event", "from_alert", "from_domain_event"]
