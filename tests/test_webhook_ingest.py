"""Tests for webhook verification, exactly-once processing and receipts."""

from __future__ import annotations

import hashlib
import hmac
import json
from datetime import timedelta

import pytest
import stripe

from notifyhub.application.use_cases import WebhookIngestService
from notifyhub.application.use_cases.webhooks import (
    ACK_FAILED,
    ACK_IN_PROGRESS,
    ACK_PROCESSED,
    WebhookHandlerRegistry,
)
from notifyhub.domain.entities import (
    ATTEMPT_STATUS_DELIVERED,
    WEBHOOK_STATUS_FAILED,
    WEBHOOK_STATUS_PENDING,
    WEBHOOK_STATUS_PROCESSED,
    NotificationRequest,
    WebhookEvent,
)
from notifyhub.domain.errors import NotFoundError, SignatureInvalid, ValidationError
from notifyhub.infrastructure.gateways import StripeAdapter
from notifyhub.infrastructure.repositories import WebhookEventRepository

from .conftest import WEBHOOK_SECRETS


def _body(payload: dict) -> bytes:
    return json.dumps(payload).encode("utf-8")


def stripe_headers(body: bytes, timestamp: int, secret: str = WEBHOOK_SECRETS["stripe"]) -> dict:
    signed = f"{timestamp}.".encode("utf-8") + body
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return {"Stripe-Signature": f"t={timestamp},v1={signature}"}


def paystack_headers(body: bytes, secret: str = WEBHOOK_SECRETS["paystack"]) -> dict:
    signature = hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()
    return {"x-paystack-signature": signature}


def generic_headers(body: bytes, secret: str) -> dict:
    signature = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return {"X-Webhook-Signature": f"sha256={signature}"}


def test_valid_stripe_webhook_is_processed(session, ingest_service, clock):
    body = _body({"id": "evt_1", "type": "payment_intent.succeeded"})

    ack = ingest_service.ingest(
        session, "stripe", body, stripe_headers(body, int(clock.now().timestamp()))
    )

    assert ack.outcome == ACK_PROCESSED
    event = WebhookEventRepository(session).get(ack.event_id)
    assert event.status == WEBHOOK_STATUS_PROCESSED
    assert event.event_type == "payment_intent.succeeded"
    assert event.processed_at is not None


def test_duplicate_delivery_is_acknowledged_without_reprocessing(session, settings, clock):
    calls: list[str] = []
    handlers = WebhookHandlerRegistry()
    handlers.register("stripe", "*", lambda db, event: calls.append(event.external_event_id))
    service = WebhookIngestService(handlers, settings, clock=clock)
    body = _body({"id": "evt_dup", "type": "charge.refunded"})
    headers = stripe_headers(body, int(clock.now().timestamp()))

    first = service.ingest(session, "stripe", body, headers)
    second = service.ingest(session, "stripe", body, headers)

    assert first.outcome == ACK_PROCESSED
    assert first.duplicate is False
    assert second.outcome == ACK_PROCESSED
    assert second.duplicate is True
    assert second.event_id == first.event_id
    assert calls == ["evt_dup"]
    assert len(WebhookEventRepository(session).list()) == 1


def test_pending_event_reports_in_progress(session, ingest_service, clock):
    WebhookEventRepository(session).create(
        WebhookEvent(
            id=None,
            gateway="stripe",
            external_event_id="evt_busy",
            event_type="charge.succeeded",
            status=WEBHOOK_STATUS_PENDING,
            received_at=clock.now(),
        )
    )
    body = _body({"id": "evt_busy", "type": "charge.succeeded"})

    ack = ingest_service.ingest(
        session, "stripe", body, stripe_headers(body, int(clock.now().timestamp()))
    )

    assert ack.outcome == ACK_IN_PROGRESS
    assert ack.duplicate is True


def test_stale_pending_event_is_taken_over_on_redelivery(session, settings, clock):
    calls: list[str] = []
    handlers = WebhookHandlerRegistry()
    handlers.register("stripe", "*", lambda db, event: calls.append(event.external_event_id))
    service = WebhookIngestService(handlers, settings, clock=clock)
    crashed = WebhookEventRepository(session).create(
        WebhookEvent(
            id=None,
            gateway="stripe",
            external_event_id="evt_crash",
            event_type="charge.succeeded",
            status=WEBHOOK_STATUS_PENDING,
            received_at=clock.now() - timedelta(hours=1),
        )
    )
    body = _body({"id": "evt_crash", "type": "charge.succeeded"})

    ack = service.ingest(
        session, "stripe", body, stripe_headers(body, int(clock.now().timestamp()))
    )

    assert ack.outcome == ACK_PROCESSED
    assert ack.duplicate is False
    assert ack.event_id == crashed.id
    assert calls == ["evt_crash"]
    event = WebhookEventRepository(session).get(crashed.id)
    assert event.status == WEBHOOK_STATUS_PROCESSED
    assert event.received_at == clock.now()


def test_concurrent_insert_of_same_event_is_acknowledged_as_in_progress(
    session, settings, clock, monkeypatch
):
    calls: list[str] = []
    handlers = WebhookHandlerRegistry()
    handlers.register("stripe", "*", lambda db, event: calls.append(event.external_event_id))
    service = WebhookIngestService(handlers, settings, clock=clock)
    original_create = WebhookEventRepository.create

    def lose_the_race(self, event):
        # The other delivery commits its row first; ours hits the unique key.
        original_create(self, event)
        return None

    monkeypatch.setattr(WebhookEventRepository, "create", lose_the_race)
    body = _body({"id": "evt_race", "type": "charge.succeeded"})

    ack = service.ingest(
        session, "stripe", body, stripe_headers(body, int(clock.now().timestamp()))
    )

    assert ack.outcome == ACK_IN_PROGRESS
    assert ack.duplicate is True
    assert ack.event_id is not None
    assert calls == []


def test_concurrent_insert_without_visible_winner_still_acks(
    session, ingest_service, clock, monkeypatch
):
    monkeypatch.setattr(WebhookEventRepository, "create", lambda self, event: None)
    body = _body({"id": "evt_ghost", "type": "charge.succeeded"})

    ack = ingest_service.ingest(
        session, "stripe", body, stripe_headers(body, int(clock.now().timestamp()))
    )

    assert ack.outcome == ACK_IN_PROGRESS
    assert ack.event_id is None
    assert ack.external_event_id == "evt_ghost"


@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"Stripe-Signature": "t=1,v1=deadbeef"},
        {"Stripe-Signature": "v1=deadbeef"},
    ],
)
def test_invalid_stripe_signature_is_rejected_and_not_stored(
    session, ingest_service, headers
):
    body = _body({"id": "evt_forged", "type": "charge.succeeded"})

    with pytest.raises(SignatureInvalid):
        ingest_service.ingest(session, "stripe", body, headers)

    assert WebhookEventRepository(session).list() == []


def test_stripe_signature_outside_tolerance_is_rejected(session, ingest_service, clock):
    body = _body({"id": "evt_old", "type": "charge.succeeded"})
    stale = int(clock.now().timestamp()) - 3600

    with pytest.raises(SignatureInvalid, match="tolerance"):
        ingest_service.ingest(session, "stripe", body, stripe_headers(body, stale))


def test_stripe_accepts_any_matching_v1_signature(clock):
    body = _body({"id": "evt_rotated", "type": "charge.succeeded"})
    timestamp = int(clock.now().timestamp())
    good = stripe_headers(body, timestamp)["Stripe-Signature"].split("v1=")[1]
    header = {"stripe-signature": f"t={timestamp},v1=0000,v1={good}"}

    StripeAdapter().verify(body, header, WEBHOOK_SECRETS["stripe"], now=clock.now())


def test_stripe_signature_from_another_secret_is_rejected(clock):
    body = _body({"id": "evt_other", "type": "charge.succeeded"})
    headers = stripe_headers(body, int(clock.now().timestamp()), secret="whsec_someone_else")

    with pytest.raises(SignatureInvalid, match="Signature mismatch"):
        StripeAdapter().verify(body, headers, WEBHOOK_SECRETS["stripe"], now=clock.now())


def test_stripe_rejects_non_utf8_body(clock):
    with pytest.raises(SignatureInvalid, match="UTF-8"):
        StripeAdapter().verify(
            b"\xff\xfe", {"Stripe-Signature": "t=1,v1=00"}, WEBHOOK_SECRETS["stripe"],
            now=clock.now(),
        )


def test_stripe_verification_goes_through_the_sdk(clock, monkeypatch):
    calls = []

    def fake_verify_header(payload, header, secret, tolerance=None):
        calls.append((payload, header, secret, tolerance))
        raise stripe.error.SignatureVerificationError("No signatures found", header)

    monkeypatch.setattr(stripe.WebhookSignature, "verify_header", fake_verify_header)
    body = _body({"id": "evt_sdk", "type": "charge.succeeded"})
    headers = stripe_headers(body, int(clock.now().timestamp()))

    with pytest.raises(SignatureInvalid, match="No signatures found"):
        StripeAdapter().verify(body, headers, WEBHOOK_SECRETS["stripe"], now=clock.now())

    assert calls == [
        (body.decode("utf-8"), headers["Stripe-Signature"], WEBHOOK_SECRETS["stripe"], None)
    ]


def test_paystack_signature_uses_sha512(session, ingest_service):
    body = _body({"event": "charge.success", "data": {"id": 981, "reference": "ref-1"}})

    ack = ingest_service.ingest(session, "paystack", body, paystack_headers(body))

    assert ack.outcome == ACK_PROCESSED
    assert ack.external_event_id == "981"

    with pytest.raises(SignatureInvalid):
        ingest_service.ingest(
            session, "paystack", body, {"X-Paystack-Signature": "sha512=" + "0" * 128}
        )


def test_unknown_gateway_is_not_found(session, ingest_service):
    with pytest.raises(NotFoundError):
        ingest_service.ingest(session, "mpesa", b"{}", {})


def test_missing_secret_rejects_delivery(session, settings, clock, in_app_engine):
    from notifyhub.application.use_cases import build_default_handlers

    service = WebhookIngestService(
        build_default_handlers(in_app_engine),
        settings.model_copy(update={"webhook_secrets": {}}),
        clock=clock,
    )
    body = _body({"id": "evt_1", "type": "charge.succeeded"})

    with pytest.raises(SignatureInvalid):
        service.ingest(session, "stripe", body, stripe_headers(body, int(clock.now().timestamp())))


def test_malformed_payload_is_stored_as_failed(session, ingest_service):
    body = b"not json at all"

    ack = ingest_service.ingest(
        session, "paypal", body, generic_headers(body, WEBHOOK_SECRETS["paypal"])
    )
    replay = ingest_service.ingest(
        session, "paypal", body, generic_headers(body, WEBHOOK_SECRETS["paypal"])
    )

    assert ack.outcome == ACK_FAILED
    assert ack.external_event_id.startswith("malformed-")
    assert replay.event_id == ack.event_id
    (event,) = WebhookEventRepository(session).list()
    assert event.status == WEBHOOK_STATUS_FAILED
    assert event.raw_body == "not json at all"
    with pytest.raises(ValidationError):
        ingest_service.reprocess(session, event.id)


def test_failed_event_is_reclaimed_on_redelivery(session, settings, clock):
    state = {"fail": True}

    def flaky(db, event):
        if state["fail"]:
            raise RuntimeError("booking service unavailable")
        return None

    handlers = WebhookHandlerRegistry()
    handlers.register("*", "*", flaky)
    service = WebhookIngestService(handlers, settings, clock=clock)
    body = _body({"id": "WH-1", "event_type": "PAYMENT.CAPTURE.COMPLETED"})
    headers = generic_headers(body, WEBHOOK_SECRETS["paypal"])

    first = service.ingest(session, "paypal", body, headers)
    assert first.outcome == ACK_FAILED
    assert "booking service unavailable" in first.error
    assert WebhookEventRepository(session).get(first.event_id).status == WEBHOOK_STATUS_FAILED

    state["fail"] = False
    second = service.ingest(session, "paypal", body, headers)

    assert second.outcome == ACK_PROCESSED
    assert second.event_id == first.event_id
    assert WebhookEventRepository(session).get(first.event_id).status == WEBHOOK_STATUS_PROCESSED


def test_reprocess_only_accepts_failed_events(session, settings, clock):
    state = {"fail": True}

    def flaky(db, event):
        if state["fail"]:
            raise RuntimeError("downstream timeout")
        return None

    handlers = WebhookHandlerRegistry()
    handlers.register("stripe", "*", flaky)
    service = WebhookIngestService(handlers, settings, clock=clock)
    body = _body({"id": "evt_retry", "type": "charge.succeeded"})
    ack = service.ingest(session, "stripe", body, stripe_headers(body, int(clock.now().timestamp())))

    state["fail"] = False
    reprocessed = service.reprocess(session, ack.event_id)

    assert reprocessed.outcome == ACK_PROCESSED
    with pytest.raises(ValidationError):
        service.reprocess(session, ack.event_id)
    with pytest.raises(NotFoundError):
        service.reprocess(session, 404)


def test_delivery_receipt_confirms_attempt(
    session, make_user, in_app_engine, ingest_service, clock
):
    user = make_user()
    request_id = in_app_engine.submit(
        session,
        NotificationRequest(
            id=None, title="Payout sent", body="We sent your payout", recipient_ids=[user.id],
            channels=["email"],
        ),
    )
    in_app_engine.run_pending(clock.now())
    (attempt,) = in_app_engine.get_status(session, request_id)
    body = _body({"id": "rcpt-1", "type": "delivered", "provider_message_id": "msg-1"})

    ack = ingest_service.ingest(
        session, "delivery", body, generic_headers(body, WEBHOOK_SECRETS["delivery"])
    )

    assert ack.outcome == ACK_PROCESSED
    assert in_app_engine.get_status(session, request_id)[0].status == ATTEMPT_STATUS_DELIVERED
    assert WebhookEventRepository(session).get(ack.event_id).attempt_id == attempt.id


def test_receipt_for_unknown_attempt_is_parked_as_failed(session, ingest_service):
    body = _body({"id": "rcpt-2", "type": "delivered", "attempt_id": 777})

    ack = ingest_service.ingest(
        session, "delivery", body, generic_headers(body, WEBHOOK_SECRETS["delivery"])
    )

    assert ack.outcome == ACK_FAILED
    assert "NotFoundError" in ack.error


def test_reprocess_takes_over_only_stuck_pending_events(session, settings, clock):
    handlers = WebhookHandlerRegistry()
    service = WebhookIngestService(handlers, settings, clock=clock)
    repository = WebhookEventRepository(session)
    fresh = repository.create(
        WebhookEvent(
            id=None, gateway="paypal", external_event_id="WH-fresh",
            event_type="PAYMENT.CAPTURE.COMPLETED", status=WEBHOOK_STATUS_PENDING,
            received_at=clock.now(),
        )
    )
    stuck = repository.create(
        WebhookEvent(
            id=None, gateway="paypal", external_event_id="WH-stuck",
            event_type="PAYMENT.CAPTURE.COMPLETED", status=WEBHOOK_STATUS_PENDING,
            received_at=clock.now() - timedelta(minutes=settings.stuck_pending_minutes + 1),
        )
    )

    with pytest.raises(ValidationError, match="already being processed"):
        service.reprocess(session, fresh.id)
    ack = service.reprocess(session, stuck.id)

    assert ack.outcome == ACK_PROCESSED
    assert repository.get(stuck.id).status == WEBHOOK_STATUS_PROCESSED
    assert repository.get(fresh.id).status == WEBHOOK_STATUS_PENDING
