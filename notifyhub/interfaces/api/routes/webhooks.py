"""Webhook receiver and the manual review endpoints."""

from __future__ import annotations

from functools import partial

import anyio
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from notifyhub.application.use_cases import WebhookIngestService
from notifyhub.domain.errors import NotFoundError, SignatureInvalid, ValidationError
from notifyhub.infrastructure.database import get_db
from notifyhub.interfaces.api.dependencies import get_ingest_service
from notifyhub.interfaces.api.schemas import WebhookAckRead, WebhookEventRead

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.get("/events", response_model=list[WebhookEventRead])
def list_webhook_events(
    status_filter: str | None = Query(default=None, alias="status", pattern="^(pending|processed|failed)$"),
    gateway: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    service: WebhookIngestService = Depends(get_ingest_service),
) -> list[WebhookEventRead]:
    """Return received webhooks, newest first; ``status=failed`` is the review list."""

    events = service.list_events(db, status=status_filter, gateway=gateway, limit=limit)
    return [WebhookEventRead.model_validate(event) for event in events]


@router.post("/events/{event_id}/reprocess", response_model=WebhookAckRead)
def reprocess_webhook_event(
    event_id: int,
    db: Session = Depends(get_db),
    service: WebhookIngestService = Depends(get_ingest_service),
) -> WebhookAckRead:
    try:
        ack = service.reprocess(db, event_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return WebhookAckRead.model_validate(ack)


@router.post("/{gateway}", response_model=WebhookAckRead)
async def receive_webhook(
    gateway: str,
    request: Request,
    db: Session = Depends(get_db),
    service: WebhookIngestService = Depends(get_ingest_service),
) -> WebhookAckRead:
    """Acknowledge every stored outcome with 200 so gateways stop redelivering.

    Only an unknown gateway (404) or a bad signature (400) is refused.
    """

    raw_body = await request.body()
    headers = dict(request.headers)
    try:
        ack = await anyio.to_thread.run_sync(
            partial(service.ingest, db, gateway, raw_body, headers)
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except SignatureInvalid as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return WebhookAckRead.model_validate(ack)
