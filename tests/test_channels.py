"""Unit tests for the built-in delivery channels."""

from __future__ import annotations

import json

import pytest

from notifyhub.config import Settings
from notifyhub.domain.entities import User
from notifyhub.infrastructure.channels import (
    OUTCOME_OK,
    OUTCOME_PERMANENT,
    OUTCOME_RETRYABLE,
    Delivery,
    EmailChannel,
    PushChannel,
    SmsChannel,
    build_default_registry,
)
from notifyhub.infrastructure.channels.email import classify_status_code, render_html


class _FakeResponse:
    def __init__(self, status_code: int, body: bytes = b"", headers: dict | None = None) -> None:
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}


class _FakeHTTPError(Exception):
    def __init__(self, status_code: int, body: bytes) -> None:
        super().__init__(f"HTTP Error {status_code}")
        self.status_code = status_code
        self.body = body


class _FakeClient:
    def __init__(self, outcome) -> None:
        self.outcome = outcome
        self.sent = []

    def __call__(self, api_key: str) -> "_FakeClient":
        self.api_key = api_key
        return self

    def send(self, message):
        self.sent.append(message)
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


@pytest.fixture()
def email_settings() -> Settings:
    return Settings(sendgrid_api_key="SG.test-key", sendgrid_sender="noreply@tutors.example")


def _delivery(**recipient_fields) -> Delivery:
    values = {"id": 7, "name": "Achieng", "email": "achieng@example.com", "role": "student"}
    values.update(recipient_fields)
    return Delivery(
        attempt_id=11,
        request_id=3,
        channel="email",
        recipient=User(**values),
        title="Session <confirmed>",
        body="Line one\n\nLine & two",
    )


def test_email_channel_returns_provider_message_id(email_settings):
    client = _FakeClient(_FakeResponse(202, headers={"X-Message-Id": "sg-abc"}))
    channel = EmailChannel(email_settings, client_factory=client)

    result = channel.send(_delivery())

    assert result.outcome == OUTCOME_OK
    assert result.provider_message_id == "sg-abc"
    assert client.api_key == "SG.test-key"
    assert len(client.sent) == 1


@pytest.mark.parametrize(
    ("status_code", "expected"),
    [(429, OUTCOME_RETRYABLE), (503, OUTCOME_RETRYABLE), (400, OUTCOME_PERMANENT), (403, OUTCOME_PERMANENT)],
)
def test_email_channel_classifies_http_errors(email_settings, status_code, expected):
    body = json.dumps({"errors": [{"message": "boom", "help": "https://docs.example/boom"}]}).encode()
    channel = EmailChannel(email_settings, client_factory=_FakeClient(_FakeHTTPError(status_code, body)))

    result = channel.send(_delivery())

    assert result.outcome == expected
    assert "boom (help: https://docs.example/boom)" in result.error


def test_email_channel_treats_network_errors_as_retryable(email_settings):
    channel = EmailChannel(
        email_settings, client_factory=_FakeClient(ConnectionError("connection reset"))
    )

    assert channel.send(_delivery()).outcome == OUTCOME_RETRYABLE


def test_email_channel_rejects_unexpected_response_status(email_settings):
    channel = EmailChannel(
        email_settings, client_factory=_FakeClient(_FakeResponse(500, body=b"upstream down"))
    )

    result = channel.send(_delivery())

    assert result.outcome == OUTCOME_RETRYABLE
    assert "upstream down" in result.error


def test_email_channel_without_configuration_or_address_is_permanent(email_settings):
    unconfigured = EmailChannel(Settings(), client_factory=_FakeClient(_FakeResponse(202)))
    configured = EmailChannel(email_settings, client_factory=_FakeClient(_FakeResponse(202)))

    assert unconfigured.send(_delivery()).outcome == OUTCOME_PERMANENT
    assert configured.send(_delivery(email=None)).outcome == OUTCOME_PERMANENT


def test_classify_status_code_without_status_is_retryable():
    assert classify_status_code(None, None).outcome == OUTCOME_RETRYABLE


def test_render_html_escapes_content():
    rendered = render_html(_delivery())

    assert "<h2>Session &lt;confirmed&gt;</h2>" in rendered
    assert "<p>Line &amp; two</p>" in rendered


def test_sms_and_push_need_contact_details():
    assert SmsChannel().send(_delivery(phone="+254700000001")).outcome == OUTCOME_OK
    assert SmsChannel().send(_delivery(phone=None)).outcome == OUTCOME_PERMANENT
    assert PushChannel().send(_delivery(push_token="tok-1")).outcome == OUTCOME_OK
    assert PushChannel().send(_delivery()).outcome == OUTCOME_PERMANENT


def test_default_registry_contains_builtin_channels(session_factory, email_settings):
    registry = build_default_registry(session_factory, email_settings)

    assert sorted(registry.names()) == ["email", "in_app", "push", "sms"]
    assert registry.get("in_app").supports_confirmation is True
    assert registry.get("sms").supports_confirmation is False
    assert "fax" not in registry
