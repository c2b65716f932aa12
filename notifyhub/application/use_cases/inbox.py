"""In-app inbox: listing, unread counters and read acknowledgements."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from notifyhub.domain.entities import Notification
from notifyhub.domain.errors import NotifyHubError
from notifyhub.infrastructure.repositories import NotificationRepository

logger = logging.getLogger(__name__)


def list_inbox(
    session: Session, user_id: int, *, unread_only: bool = False, limit: int = 50
) -> Sequence[Notification]:
    return NotificationRepository(session).list_for_user(
        user_id, unread_only=unread_only, limit=limit
    )


def unread_count(session: Session, user_id: int) -> int:
    return NotificationRepository(session).unread_count(user_id)


def mark_read(
    session: Session,
    engine: Any | None,
    user_id: int,
    notification_ids: Iterable[int] | None = None,
    *,
    now: datetime | None = None,
) -> list[Notification]:
    """Mark notifications as read and confirm the attempts that produced them.

    Reading an in-app notification is its delivery receipt: the linked
    attempt moves from ``sent`` to ``delivered``.
    """

    changed = NotificationRepository(session).mark_as_read(
        notification_ids, user_id=user_id, read_at=now
    )
    if engine is None:
        return changed
    for notification in changed:
        attempt_id = (notification.payload or {}).get("attempt_id")
        if attempt_id is None:
            continue
        try:
            engine.confirm_delivery(session, int(attempt_id), now=now)
        except NotifyHubError as exc:
            logger.info(
                "Notification %s read but attempt %s not confirmed: %s",
                notification.id,
                attempt_id,
                exc,
            )
    return changed


__all__ = ["list_inbox", "mark_read", "unread_count"]
