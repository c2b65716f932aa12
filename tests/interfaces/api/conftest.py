"""Fixtures for the HTTP API tests."""

from __future__ import annotations

import pytest

pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

from main import create_app
from notifyhub.interfaces.api.dependencies import (
    get_app_settings,
    get_dispatch_engine,
    get_ingest_service,
)


@pytest.fixture()
def client(settings, in_app_engine, ingest_service):
    """Return a test client whose services run on the manual clock."""

    app = create_app()
    app.dependency_overrides[get_app_settings] = lambda: settings
    app.dependency_overrides[get_dispatch_engine] = lambda: in_app_engine
    app.dependency_overrides[get_ingest_service] = lambda: ingest_service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
