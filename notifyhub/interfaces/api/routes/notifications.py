"""Endpoints and websocket handler for notification requests and the inbox."""

from __future__ import annotations

import logging
from functools import partial
from typing import Any

import anyio
from fastapi import (
    APIRouter,
    Body,
    Depends,
    HTTPException,
    Query,
    Response,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from sqlalchemy.orm import Session

from notifyhub.application.use_cases import (
    DispatchEngine,
    dispatch_domain_event,
    list_inbox,
    mark_read,
    unread_count,
)
from notifyhub.domain.entities import Notification, NotificationRequest
from notifyhub.domain.errors import NotFoundError, ValidationError
from notifyhub.infrastructure.database import SessionLocal, get_db
from notifyhub.infrastructure.notifications import notification_manager, serialize_notification
from notifyhub.infrastructure.repositories import NotificationRequestRepository, UserRepository
from notifyhub.interfaces.api.dependencies import get_dispatch_engine
from notifyhub.interfaces.api.schemas import (
    DeliveryAttemptRead,
    DomainEventResponse,
    NotificationMarkReadRequest,
    NotificationRead,
    NotificationRequestCreate,
    NotificationRequestRead,
    NotificationSubmitResponse,
    RequestStatusRead,
    UnreadCountRead,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _notification_to_schema(notification: Notification) -> NotificationRead:
    return NotificationRead.model_validate(notification)


@router.post(
    "/requests",
    response_model=NotificationSubmitResponse,
    status_code=status.HTTP_201_CREATED,
)
def submit_notification_request(
    payload: NotificationRequestCreate,
    response: Response,
    db: Session = Depends(get_db),
    engine: DispatchEngine = Depends(get_dispatch_engine),
) -> NotificationSubmitResponse:
    """Submit a request; resubmitting an idempotency key returns the first id."""

    if payload.idempotency_key:
        existing = NotificationRequestRepository(db).get_by_idempotency_key(
            payload.idempotency_key
        )
        if existing is not None:
            response.status_code = status.HTTP_200_OK
            return NotificationSubmitResponse(id=existing.id, duplicate=True)

    request = NotificationRequest(id=None, **payload.model_dump())
    try:
        request_id = engine.submit(db, request)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return NotificationSubmitResponse(id=request_id)


@router.get("/requests/{request_id}", response_model=RequestStatusRead)
def get_notification_request(
    request_id: int,
    db: Session = Depends(get_db),
    engine: DispatchEngine = Depends(get_dispatch_engine),
) -> RequestStatusRead:
    try:
        snapshot = engine.request_status(db, request_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return RequestStatusRead(
        request=NotificationRequestRead.model_validate(snapshot.request),
        attempts=[DeliveryAttemptRead.model_validate(attempt) for attempt in snapshot.attempts],
        counts=snapshot.counts,
        outcome=snapshot.outcome,
    )


@router.post("/requests/{request_id}/cancel", response_model=NotificationRequestRead)
def cancel_notification_request(
    request_id: int,
    db: Session = Depends(get_db),
    engine: DispatchEngine = Depends(get_dispatch_engine),
) -> NotificationRequestRead:
    try:
        request = engine.cancel(db, request_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return NotificationRequestRead.model_validate(request)


@router.post("/events/{event_name}", response_model=DomainEventResponse)
def receive_domain_event(
    event_name: str,
    data: dict[str, Any] = Body(default_factory=dict),
    db: Session = Depends(get_db),
    engine: DispatchEngine = Depends(get_dispatch_engine),
) -> DomainEventResponse:
    """Turn a marketplace event into notifications through its triggers."""

    try:
        request_ids = dispatch_domain_event(db, engine, event_name, data)
    except (NotFoundError, ValidationError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return DomainEventResponse(event=event_name, request_ids=request_ids)


@router.get("/inbox/{user_id}", response_model=list[NotificationRead])
def get_inbox(
    user_id: int,
    unread_only: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
) -> list[NotificationRead]:
    """Return the most recent notifications of ``user_id``."""

    notifications = list_inbox(db, user_id, unread_only=unread_only, limit=limit)
    return [_notification_to_schema(notification) for notification in notifications]


@router.get("/inbox/{user_id}/unread-count", response_model=UnreadCountRead)
def get_unread_count(user_id: int, db: Session = Depends(get_db)) -> UnreadCountRead:
    return UnreadCountRead(user_id=user_id, unread=unread_count(db, user_id))


@router.post("/inbox/{user_id}/read", response_model=list[NotificationRead])
def mark_inbox_read(
    user_id: int,
    payload: NotificationMarkReadRequest,
    db: Session = Depends(get_db),
    engine: DispatchEngine = Depends(get_dispatch_engine),
) -> list[NotificationRead]:
    changed = mark_read(db, engine, user_id, payload.unique_ids())
    return [_notification_to_schema(notification) for notification in changed]


def _load_unread(user_id: int) -> list[Notification] | None:
    session = SessionLocal()
    try:
        if UserRepository(session).get(user_id) is None:
            return None
        return list(list_inbox(session, user_id, unread_only=True))
    finally:
        session.close()


def _acknowledge(engine: DispatchEngine, user_id: int, ids: list[int]) -> None:
    session = SessionLocal()
    try:
        mark_read(session, engine, user_id, ids)
    finally:
        session.close()


@router.websocket("/ws")
async def notifications_websocket(websocket: WebSocket) -> None:
    """Websocket endpoint that streams notifications to ``user_id``.

    Clients acknowledge with ``{"type": "ack", "ids": [...]}``; an ack marks
    the notifications read and confirms their delivery attempts.
    """

    try:
        user_id = int(websocket.query_params.get("user_id", ""))
    except ValueError:
        await websocket.close(code=1008)
        return

    pending_notifications = await anyio.to_thread.run_sync(partial(_load_unread, user_id))
    if pending_notifications is None:
        await websocket.close(code=1008)
        return

    engine = get_dispatch_engine()
    await notification_manager.connect(user_id, websocket)
    try:
        if pending_notifications:
            await websocket.send_json(
                {"type": "init", "data": [serialize_notification(n) for n in pending_notifications]}
            )
        while True:
            try:
                message = await websocket.receive_json()
            except WebSocketDisconnect:
                raise
            except (KeyError, ValueError):
                continue

            if not isinstance(message, dict):
                continue

            message_type = message.get("type")
            if message_type == "ping":
                await websocket.send_json({"type": "pong"})
                continue

            if message_type == "ack":
                ids = message.get("ids", [])
                if isinstance(ids, list) and ids:
                    valid_ids = [value for value in ids if isinstance(value, int)]
                    await anyio.to_thread.run_sync(
                        partial(_acknowledge, engine, user_id, valid_ids)
                    )
                continue
    except WebSocketDisconnect:
        notification_manager.disconnect(user_id, websocket)
    except Exception:  # pragma: no cover - unexpected socket failure
        notification_manager.disconnect(user_id, websocket)
        logger.exception("Notification websocket of user %s failed", user_id)
        raise
