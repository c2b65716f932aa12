"""Notification templates: ``{{ key }}`` placeholder rendering and storage."""

from __future__ import annotations

import re
from typing import Any

from sqlalchemy.orm import Session

from notifyhub.domain.entities import NOTIFICATION_LEVELS, NotificationTemplate
from notifyhub.domain.errors import NotFoundError, ValidationError
from notifyhub.infrastructure.repositories import NotificationTemplateRepository

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][\w.]*)\s*\}\}")
_MISSING = object()


def _lookup(context: dict[str, Any], dotted: str) -> Any:
    value: Any = context
    for part in dotted.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def render_template(text: str, context: dict[str, Any] | None) -> str:
    """Replace ``{{ key }}`` placeholders with values from ``context``.

    Dotted keys reach into nested mappings. Unknown placeholders are left
    untouched so a missing value is visible instead of silently blank.
    """

    if not text or not context:
        return text

    def _replace(match: re.Match[str]) -> str:
        value = _lookup(context, match.group(1))
        if value is _MISSING or value is None:
            return match.group(0)
        return str(value)

    return _PLACEHOLDER.sub(_replace, text)


def get_template(session: Session, name: str) -> NotificationTemplate:
    template = NotificationTemplateRepository(session).get_by_name(name)
    if template is None:
        raise NotFoundError(f"Template {name!r} not found")
    if not template.is_active:
        raise ValidationError(f"Template {name!r} is inactive")
    return template


def create_template(
    session: Session,
    *,
    name: str,
    title: str,
    body: str,
    level: str = "info",
    channels: list[str] | None = None,
) -> NotificationTemplate:
    """Store a reusable template."""

    if not name.strip() or not title.strip() or not body.strip():
        raise ValidationError("Template name, title and body are required")
    if level not in NOTIFICATION_LEVELS:
        raise ValidationError(f"Unsupported level {level!r}")
    return NotificationTemplateRepository(session).create(
        NotificationTemplate(
            id=None,
            name=name.strip(),
            title=title,
            body=body,
            level=level,
            channels=list(channels or ["in_app"]),
        )
    )


__all__ = ["create_template", "get_template", "render_template"]
