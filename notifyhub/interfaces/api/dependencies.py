"""FastAPI dependency utilities."""

from __future__ import annotations

from functools import lru_cache

from notifyhub.application.use_cases import (
    DispatchEngine,
    WebhookIngestService,
    build_default_handlers,
)
from notifyhub.config import Settings, get_settings
from notifyhub.infrastructure.channels import ChannelRegistry, build_default_registry
from notifyhub.infrastructure.database import SessionLocal


def get_app_settings() -> Settings:
    return get_settings()


@lru_cache
def get_channel_registry() -> ChannelRegistry:
    """Return the process-wide channel registry."""

    return build_default_registry(SessionLocal, get_settings())


@lru_cache
def get_dispatch_engine() -> DispatchEngine:
    """Return the process-wide dispatch engine."""

    return DispatchEngine(SessionLocal, get_channel_registry(), get_settings())


@lru_cache
def get_ingest_service() -> WebhookIngestService:
    """Return the webhook ingest service wired to the dispatch engine."""

    return WebhookIngestService(build_default_handlers(get_dispatch_engine()), get_settings())


def reset_services() -> None:
    """Drop the cached services, stopping the engine's worker pool."""

    if get_dispatch_engine.cache_info().currsize:
        get_dispatch_engine().shutdown(wait=False)
    get_ingest_service.cache_clear()
    get_dispatch_engine.cache_clear()
    get_channel_registry.cache_clear()


__all__ = [
    "get_app_settings",
    "get_channel_registry",
    "get_dispatch_engine",
    "get_ingest_service",
    "reset_services",
]
