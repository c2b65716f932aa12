"""Signature verification and payload parsing for webhook gateways."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import stripe

from notifyhub.domain.errors import MalformedPayload, SignatureInvalid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParsedEvent:
    """Identity and content extracted from a webhook body."""

    external_event_id: str
    event_type: str
    payload: dict[str, Any]


def _header(headers: Mapping[str, str], name: str) -> str | None:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def _hex_digest(secret: str, message: bytes, digestmod: Any) -> str:
    return hmac.new(secret.encode("utf-8"), message, digestmod).hexdigest()


def _load_object(raw_body: bytes) -> dict[str, Any]:
    try:
        data = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedPayload(f"Body is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedPayload("Body must be a JSON object")
    return data


def _require(value: Any, field: str) -> str:
    if value in (None, ""):
        raise MalformedPayload(f"Missing {field}")
    return str(value)


def _stripe_timestamp(header: str) -> int:
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            return int(value)
    raise SignatureInvalid("Stripe-Signature header has no timestamp")


class GatewayAdapter:
    """Verifies and parses the webhooks of one gateway."""

    name: str = ""
    signature_header: str = "X-Webhook-Signature"

    def verify(
        self,
        raw_body: bytes,
        headers: Mapping[str, str],
        secret: str,
        *,
        now: datetime,
    ) -> None:
        signature = _header(headers, self.signature_header)
        if not signature:
            raise SignatureInvalid(f"Missing {self.signature_header} header")
        expected = "sha256=" + _hex_digest(secret, raw_body, hashlib.sha256)
        if not hmac.compare_digest(expected, signature.strip()):
            raise SignatureInvalid("Signature mismatch")

    def parse(self, raw_body: bytes) -> ParsedEvent:
        data = _load_object(raw_body)
        return ParsedEvent(
            external_event_id=_require(data.get("id"), "id"),
            event_type=_require(data.get("type"), "type"),
            payload=data,
        )


class StripeAdapter(GatewayAdapter):
    """``Stripe-Signature: t=<unix>,v1=<hex>``, checked with the Stripe SDK.

    The SDK's own tolerance check reads the wall clock, so it is disabled and
    the timestamp is compared against the ``now`` the caller passes in.
    """

    name = "stripe"
    signature_header = "Stripe-Signature"

    def __init__(self, tolerance_seconds: int = 300) -> None:
        self.tolerance_seconds = tolerance_seconds

    def verify(self, raw_body, headers, secret, *, now):
        header = _header(headers, self.signature_header)
        if not header:
            raise SignatureInvalid("Missing Stripe-Signature header")
        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SignatureInvalid("Body is not UTF-8") from exc

        try:
            stripe.WebhookSignature.verify_header(payload, header, secret, tolerance=None)
        except stripe.error.SignatureVerificationError as exc:
            raise SignatureInvalid(f"Signature mismatch: {exc}") from exc

        if self.tolerance_seconds:
            signed_at = _stripe_timestamp(header)
            if abs(now.timestamp() - signed_at) > self.tolerance_seconds:
                raise SignatureInvalid("Stripe-Signature timestamp outside tolerance")

    def parse(self, raw_body):
        data = _load_object(raw_body)
        return ParsedEvent(
            external_event_id=_require(data.get("id"), "id"),
            event_type=_require(data.get("type"), "type"),
            payload=data,
        )


class PaystackAdapter(GatewayAdapter):
    """``X-Paystack-Signature``: HMAC-SHA512 hex of the body."""

    name = "paystack"
    signature_header = "X-Paystack-Signature"

    def verify(self, raw_body, headers, secret, *, now):
        signature = _header(headers, self.signature_header)
        if not signature:
            raise SignatureInvalid("Missing X-Paystack-Signature header")
        expected = _hex_digest(secret, raw_body, hashlib.sha512)
        if not hmac.compare_digest(expected, signature.strip()):
            raise SignatureInvalid("Signature mismatch")

    def parse(self, raw_body):
        data = _load_object(raw_body)
        details = data.get("data")
        if not isinstance(details, dict):
            raise MalformedPayload("Missing data object")
        event_id = details.get("id") or details.get("reference")
        return ParsedEvent(
            external_event_id=_require(event_id, "data.id"),
            event_type=_require(data.get("event"), "event"),
            payload=data,
        )


class PaypalAdapter(GatewayAdapter):
    name = "paypal"

    def parse(self, raw_body):
        data = _load_object(raw_body)
        return ParsedEvent(
            external_event_id=_require(data.get("id"), "id"),
            event_type=_require(data.get("event_type"), "event_type"),
            payload=data,
        )


class DeliveryReceiptAdapter(GatewayAdapter):
    """Delivery receipts posted by channel providers."""

    name = "delivery"


def build_gateway_adapters(stripe_tolerance_seconds: int = 300) -> dict[str, GatewayAdapter]:
    adapters: list[GatewayAdapter] = [
        StripeAdapter(stripe_tolerance_seconds),
        PaystackAdapter(),
        PaypalAdapter(),
        DeliveryReceiptAdapter(),
    ]
    return {adapter.name: adapter for adapter in adapters}


__all__ = [
    "DeliveryReceiptAdapter",
    "GatewayAdapter",
    "ParsedEvent",
    "PaypalAdapter",
    "PaystackAdapter",
    "StripeAdapter",
    "build_gateway_adapters",
]
