"""Registry of the websockets subscribed to in-app notifications."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class NotificationConnectionManager:
    """Track open inbox websockets per recipient.

    A recipient may keep several sockets open (one per browser tab); every
    message is fanned out to all of them and sockets that fail are dropped.
    """

    def __init__(self) -> None:
        self._sockets: defaultdict[int, list[WebSocket]] = defaultdict(list)

    async def connect(self, user_id: int, websocket: WebSocket) -> None:
        await websocket.accept()
        self._sockets[user_id].append(websocket)
        logger.debug("Inbox websocket opened for user %s", user_id)

    def disconnect(self, user_id: int, websocket: WebSocket) -> None:
        sockets = self._sockets.get(user_id)
        if not sockets:
            return
        if websocket in sockets:
            sockets.remove(websocket)
        if not sockets:
            del self._sockets[user_id]

    def is_connected(self, user_id: int) -> bool:
        return bool(self._sockets.get(user_id))

    def connection_count(self) -> int:
        return sum(len(sockets) for sockets in self._sockets.values())

    async def send_to_user(self, user_id: int, message: dict[str, Any]) -> int:
        """Send ``message`` to the sockets of ``user_id``; return how many got it."""

        delivered = 0
        for websocket in list(self._sockets.get(user_id, ())):
            try:
                await websocket.send_json(message)
            except Exception:  # pragma: no cover - socket closed under us
                logger.debug("Dropping inbox websocket of user %s after failed send", user_id)
                self.disconnect(user_id, websocket)
            else:
                delivered += 1
        return delivered


notification_manager = NotificationConnectionManager()


__all__ = ["NotificationConnectionManager", "notification_manager"]
