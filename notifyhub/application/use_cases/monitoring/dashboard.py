"""Data behind the operator dashboard."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from notifyhub.config import Settings, get_settings
from notifyhub.domain.entities import SEVERITY_CRITICAL, SEVERITY_WARNING, WebhookEvent
from notifyhub.infrastructure.repositories import WebhookEventRepository

from .stats import StatsReport, compute_stats

VOLUME_WINDOWS = {
    "last_hour": timedelta(hours=1),
    "last_24h": timedelta(hours=24),
    "last_7d": timedelta(days=7),
    "last_30d": timedelta(days=30),
}


@dataclass
class DashboardData:
    stats: StatsReport
    failures_last_hour: int
    volume: dict[str, int]
    peak_hour_count: int
    recent_events: list[WebhookEvent]
    health: list[tuple[str, str]] = field(default_factory=list)


def dashboard_data(
    session: Session,
    *,
    now: datetime,
    settings: Settings | None = None,
    recent_limit: int = 5,
) -> DashboardData:
    """Collect the 24h stats, traffic volume and a health verdict."""

    settings = settings or get_settings()
    repository = WebhookEventRepository(session)
    stuck_after = timedelta(minutes=settings.stuck_pending_minutes)
    stats = compute_stats(session, timedelta(hours=24), now=now, stuck_after=stuck_after)
    last_hour = compute_stats(session, timedelta(hours=1), now=now, stuck_after=stuck_after)

    health: list[tuple[str, str]] = []
    if last_hour.overall.failed > 5:
        health.append(
            (SEVERITY_CRITICAL, f"{last_hour.overall.failed} failed webhooks in the last hour")
        )
    if stats.overall.stuck_pending > 0:
        health.append(
            (SEVERITY_WARNING, f"{stats.overall.stuck_pending} webhook(s) pending for more than {settings.stuck_pending_minutes} minutes")
        )
    if stats.overall.success_rate < settings.success_rate_threshold:
        health.append(
            (SEVERITY_WARNING, f"Success rate {stats.overall.success_rate}% is below {settings.success_rate_threshold:g}%")
        )

    return DashboardData(
        stats=stats,
        failures_last_hour=last_hour.overall.failed,
        volume={name: repository.count_since(now - window) for name, window in VOLUME_WINDOWS.items()},
        peak_hour_count=repository.peak_hour_count(now - timedelta(hours=24)),
        recent_events=list(repository.list(limit=recent_limit)),
        health=health,
    )


__all__ = ["DashboardData", "dashboard_data"]
