"""Shared fixtures: a throwaway SQLite database, fake channels and a manual clock."""

from __future__ import annotations

import json
import os
import tempfile
import threading
import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

import pytest

TEST_DB_PATH = Path(tempfile.gettempdir()) / f"notifyhub-test-{os.getpid()}.db"
WEBHOOK_SECRETS = {
    "stripe": "whsec_test",
    "paystack": "sk_test_paystack",
    "paypal": "paypal_secret",
    "delivery": "delivery_secret",
}

os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
os.environ["WEBHOOK_SECRETS"] = json.dumps(WEBHOOK_SECRETS)
os.environ["APP_TIMEZONE"] = "UTC"
os.environ.pop("SENDGRID_API_KEY", None)
os.environ.pop("SENDGRID_SENDER", None)

from notifyhub.application.use_cases import (  # noqa: E402
    DispatchEngine,
    WebhookIngestService,
    build_default_handlers,
)
from notifyhub.config import Settings  # noqa: E402
from notifyhub.domain.entities import User  # noqa: E402
from notifyhub.infrastructure import database  # noqa: E402
from notifyhub.infrastructure.channels import (  # noqa: E402
    ChannelRegistry,
    Delivery,
    DeliveryChannel,
    InAppChannel,
    SendResult,
)
from notifyhub.infrastructure.repositories import UserRepository  # noqa: E402
from notifyhub.utils import ManualClock  # noqa: E402

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeChannel(DeliveryChannel):
    """Channel whose outcome is chosen by the test.

    ``behaviour`` is either a :class:`SendResult`, an exception instance to
    raise, or a callable receiving the delivery.
    """

    def __init__(
        self,
        name: str,
        behaviour: SendResult | BaseException | Callable[[Delivery], SendResult] | None = None,
        *,
        supports_confirmation: bool = False,
        delay: float = 0.0,
    ) -> None:
        self.name = name
        self.supports_confirmation = supports_confirmation
        self.behaviour = behaviour if behaviour is not None else SendResult.ok()
        self.delay = delay
        self.deliveries: list[Delivery] = []
        self._lock = threading.Lock()

    def send(self, delivery: Delivery) -> SendResult:
        with self._lock:
            self.deliveries.append(delivery)
        if self.delay:
            time.sleep(self.delay)
        if isinstance(self.behaviour, BaseException):
            raise self.behaviour
        if callable(self.behaviour):
            return self.behaviour(delivery)
        return self.behaviour


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        database_url=f"sqlite:///{TEST_DB_PATH}",
        webhook_secrets=WEBHOOK_SECRETS,
        dispatch_workers=2,
        send_timeout_seconds=2.0,
        alert_channels=["in_app"],
    )


@pytest.fixture(autouse=True)
def setup_database():
    """Start every test from empty tables."""

    database.Base.metadata.drop_all(bind=database.engine, checkfirst=True)
    database.initialize_database()
    yield
    database.Base.metadata.drop_all(bind=database.engine, checkfirst=True)


@pytest.fixture()
def session_factory():
    return database.SessionLocal


@pytest.fixture()
def session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture()
def make_user(session) -> Callable[..., User]:
    counter = {"value": 0}

    def _make_user(role: str = "student", **fields) -> User:
        counter["value"] += 1
        number = counter["value"]
        values = {
            "name": f"User {number}",
            "email": f"user{number}@example.com",
            "role": role,
            "phone": f"+2547000000{number:02d}",
        }
        values.update(fields)
        return UserRepository(session).create(User(id=None, **values))

    return _make_user


@pytest.fixture()
def make_engine(session_factory, settings, clock):
    engines: list[DispatchEngine] = []

    def _make_engine(*channels: DeliveryChannel, **overrides) -> DispatchEngine:
        engine_settings = settings.model_copy(update=overrides) if overrides else settings
        engine = DispatchEngine(
            session_factory, ChannelRegistry(list(channels)), engine_settings, clock=clock
        )
        engines.append(engine)
        return engine

    yield _make_engine
    for engine in engines:
        engine.shutdown()


@pytest.fixture()
def in_app_engine(make_engine, session_factory) -> DispatchEngine:
    """Engine with the real in-app channel and a confirmable fake ``email``."""

    return make_engine(
        InAppChannel(session_factory),
        FakeChannel("email", SendResult.ok("msg-1"), supports_confirmation=True),
    )


@pytest.fixture()
def ingest_service(settings, clock, in_app_engine) -> WebhookIngestService:
    return WebhookIngestService(build_default_handlers(in_app_engine), settings, clock=clock)
