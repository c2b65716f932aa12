"""Bridge from delivery threads to the inbox websockets."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from anyio import from_thread

from notifyhub.domain.entities import Notification

from .manager import NotificationConnectionManager, notification_manager

logger = logging.getLogger(__name__)


class NotificationPublisher:
    """Serialize notifications and schedule their delivery.

    Deliveries issued from the event loop become tasks, calls made from
    AnyIO worker threads (sync FastAPI handlers) go through
    ``anyio.from_thread``. Delivery pool threads use the loop bound with
    :meth:`bind_loop` at application startup.
    """

    def __init__(self, manager: NotificationConnectionManager) -> None:
        self._manager = manager
        self._loop: asyncio.AbstractEventLoop | None = None

    def bind_loop(self, loop: asyncio.AbstractEventLoop | None) -> None:
        self._loop = loop

    def dispatch(self, notification: Notification) -> None:
        """Push ``notification`` to the open sockets of its user, if any."""

        user_id = notification.user_id
        if not self._manager.is_connected(user_id):
            return
        message = {"type": "notification", "data": self._serialize(notification)}
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            loop.create_task(self._manager.send_to_user(user_id, message))
            return

        try:
            from_thread.run(self._manager.send_to_user, user_id, message)
            return
        except RuntimeError:
            pass

        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug(
                "No event loop bound; notification %s stays in the inbox only",
                notification.id,
            )
            return
        asyncio.run_coroutine_threadsafe(
            self._manager.send_to_user(user_id, message), loop
        )

    @staticmethod
    def _serialize(notification: Notification) -> dict[str, Any]:
        return {
            "id": notification.id,
            "user_id": notification.user_id,
            "event_type": notification.event_type,
            "title": notification.title,
            "message": notification.message,
            "payload": notification.payload or {},
            "created_at": notification.created_at.isoformat()
            if notification.created_at
            else None,
            "read_at": notification.read_at.isoformat() if notification.read_at else None,
        }


notification_publisher = NotificationPublisher(notification_manager)


def serialize_notification(notification: Notification) -> dict[str, Any]:
    """Return the websocket payload representation for ``notification``."""

    return NotificationPublisher._serialize(notification)


__all__ = [
    "NotificationPublisher",
    "notification_publisher",
    "serialize_notification",
]
