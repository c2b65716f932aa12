"""Email channel backed by SendGrid."""

from __future__ import annotations

import html
import json
import logging
from collections.abc import Callable
from typing import Any

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from notifyhub.config import Settings, get_settings

from .base import Delivery, DeliveryChannel, SendResult, classify_exception

logger = logging.getLogger(__name__)


def _extract_sendgrid_error_details(body: Any) -> str | None:
    """Return a human readable description for a SendGrid error payload."""

    if body in (None, ""):
        return None

    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError:
            return None

    if isinstance(body, str):
        body = body.strip()
        if not body:
            return None
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError:
            return body
    else:
        parsed = body

    if isinstance(parsed, dict):
        errors = parsed.get("errors")
        if isinstance(errors, list):
            messages: list[str] = []
            for item in errors:
                if not isinstance(item, dict):
                    continue
                message = item.get("message")
                help_link = item.get("help")
                if message and help_link:
                    messages.append(f"{message} (help: {help_link})")
                elif message:
                    messages.append(str(message))
            if messages:
                return "; ".join(messages)
        try:
            return json.dumps(parsed)
        except (TypeError, ValueError):
            return None

    if isinstance(parsed, list):
        return "; ".join(str(item) for item in parsed)

    return None


def classify_status_code(status_code: int | None, details: str | None) -> SendResult:
    """Map a SendGrid HTTP status onto a delivery outcome."""

    description = f"SendGrid responded with status {status_code}"
    if details:
        description = f"{description}: {details}"
    if status_code is None or status_code == 429 or status_code >= 500:
        return SendResult.retryable(description)
    return SendResult.permanent(description)


def render_html(delivery: Delivery) -> str:
    paragraphs = "".join(
        f"<p>{html.escape(line)}</p>" for line in delivery.body.splitlines() if line.strip()
    )
    return f"<h2>{html.escape(delivery.title)}</h2>{paragraphs}"


class EmailChannel(DeliveryChannel):
    """Send deliveries as transactional emails via the SendGrid REST API."""

    name = "email"
    supports_confirmation = True

    def __init__(
        self,
        settings: Settings | None = None,
        client_factory: Callable[[str], Any] = SendGridAPIClient,
    ) -> None:
        self._settings = settings or get_settings()
        self._client_factory = client_factory

    def send(self, delivery: Delivery) -> SendResult:
        settings = self._settings
        if not (settings.sendgrid_api_key and settings.sendgrid_sender):
            logger.info("SendGrid configuration incomplete; cannot deliver attempt %s", delivery.attempt_id)
            return SendResult.permanent("SendGrid is not configured")
        if not delivery.recipient.email:
            return SendResult.permanent(f"User {delivery.recipient.id} has no email address")

        message = Mail(
            from_email=settings.sendgrid_sender,
            to_emails=delivery.recipient.email,
            subject=delivery.title,
            html_content=render_html(delivery),
        )

        try:
            client = self._client_factory(settings.sendgrid_api_key)
            response = client.send(message)
        except Exception as exc:
            status_code = getattr(exc, "status_code", None)
            if isinstance(status_code, int):
                details = _extract_sendgrid_error_details(getattr(exc, "body", None))
                logger.error(
                    "SendGrid API request failed with status %s: %s", status_code, details
                )
                return classify_status_code(status_code, details)
            logger.warning("Error sending email via SendGrid: %s", exc)
            return classify_exception(exc)

        status_code = getattr(response, "status_code", None)
        if not isinstance(status_code, int) or not 200 <= status_code < 300:
            details = _extract_sendgrid_error_details(getattr(response, "body", None))
            logger.error("SendGrid API responded with status %s: %s", status_code, details)
            return classify_status_code(
                status_code if isinstance(status_code, int) else None, details
            )

        headers = getattr(response, "headers", None) or {}
        message_id = headers.get("X-Message-Id") if hasattr(headers, "get") else None
        return SendResult.ok(provider_message_id=message_id)


__all__ = ["EmailChannel", "classify_status_code", "render_html"]
