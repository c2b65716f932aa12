"""Persist alert candidates, resolve cleared alerts and notify operators."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from notifyhub.config import Settings, get_settings
from notifyhub.domain.entities import Alert, AlertRule
from notifyhub.domain.errors import ValidationError
from notifyhub.infrastructure.repositories import (
    AlertRepository,
    AlertRuleRepository,
    UserRepository,
)

from ..events import from_alert
from .rules import AlertCandidate, evaluate
from .stats import StatsReport, compute_stats

logger = logging.getLogger(__name__)


@dataclass
class AlertChanges:
    opened: list[Alert] = field(default_factory=list)
    refreshed: list[Alert] = field(default_factory=list)
    resolved: list[Alert] = field(default_factory=list)


@dataclass
class SweepResult:
    reports: dict[int, StatsReport]
    candidates: list[AlertCandidate]
    changes: AlertChanges


def raise_alerts(
    session: Session,
    candidates: Iterable[AlertCandidate],
    *,
    now: datetime,
    engine: Any | None = None,
    settings: Settings | None = None,
) -> AlertChanges:
    """Open, refresh or resolve alerts so they mirror ``candidates``.

    Open alerts are unique per (kind, gateway): a candidate matching an
    open alert only refreshes it. Open alerts without a candidate are
    resolved. Newly opened alerts are sent to the admins through
    ``engine`` when one is given.
    """

    settings = settings or get_settings()
    repository = AlertRepository(session)
    open_alerts = {alert.dedup_key: alert for alert in repository.list_open()}
    changes = AlertChanges()
    seen: set[tuple[str, str | None]] = set()

    for candidate in candidates:
        key = candidate.dedup_key
        if key in seen:
            continue
        seen.add(key)
        current = open_alerts.get(key)
        if current is not None:
            repository.refresh_open(
                current.id,
                triggered_at=now,
                message=candidate.message,
                payload=candidate.payload,
            )
            changes.refreshed.append(repository.get(current.id))
            continue

        alert = repository.create(
            Alert(
                id=None,
                rule_id=candidate.rule_id,
                kind=candidate.kind,
                gateway=candidate.gateway,
                severity=candidate.severity,
                message=candidate.message,
                payload=candidate.payload,
                triggered_at=now,
            )
        )
        logger.warning("Alert raised [%s] %s", alert.severity, alert.message)
        changes.opened.append(alert)

    for key, alert in open_alerts.items():
        if key in seen:
            continue
        if repository.resolve(alert.id, resolved_at=now):
            logger.info("Alert %s (%s/%s) resolved", alert.id, alert.kind, alert.gateway or "global")
            changes.resolved.append(repository.get(alert.id))

    if engine is not None:
        for alert in changes.opened:
            _notify_admins(session, engine, alert, settings, now=now)
    return changes


def _notify_admins(
    session: Session, engine: Any, alert: Alert, settings: Settings, *, now: datetime
) -> None:
    admin_ids = UserRepository(session).list_ids_by_roles([settings.admin_role, "super-admin"])
    if not admin_ids:
        logger.warning("No admin users to notify about alert %s", alert.id)
        return
    channels = [channel for channel in settings.alert_channels if channel in engine.channels]
    if not channels:
        logger.warning("None of the alert channels %s is registered", settings.alert_channels)
        return
    try:
        request_id = engine.submit(session, from_alert(alert, admin_ids, channels), now=now)
    except ValidationError as exc:
        logger.error("Could not notify admins about alert %s: %s", alert.id, exc)
        return
    AlertRepository(session).attach_notification(alert.id, request_id)


def collect_reports(
    session: Session,
    rules: Sequence[AlertRule],
    *,
    now: datetime,
    settings: Settings,
) -> dict[int, StatsReport]:
    """Compute one report per distinct rule window."""

    stuck_after = timedelta(minutes=settings.stuck_pending_minutes)
    return {
        window: compute_stats(session, timedelta(seconds=window), now=now, stuck_after=stuck_after)
        for window in sorted({rule.window_seconds for rule in rules})
    }


def sweep(
    session: Session,
    *,
    now: datetime,
    engine: Any | None = None,
    settings: Settings | None = None,
    rules: Sequence[AlertRule] | None = None,
) -> SweepResult:
    """Compute stats, evaluate the active rules and raise the resulting alerts."""

    settings = settings or get_settings()
    if rules is None:
        rules = AlertRuleRepository(session).list(active_only=True)
    reports = collect_reports(session, rules, now=now, settings=settings)
    candidates = evaluate(reports, rules, now=now)
    changes = raise_alerts(session, candidates, now=now, engine=engine, settings=settings)
    logger.info(
        "Monitoring sweep: %s candidate(s), %s opened, %s resolved",
        len(candidates),
        len(changes.opened),
        len(changes.resolved),
    )
    return SweepResult(reports=reports, candidates=candidates, changes=changes)


def list_alerts(session: Session, *, status: str | None = None, limit: int = 100) -> Sequence[Alert]:
    return AlertRepository(session).list(status=status, limit=limit)


__all__ = [
    "AlertChanges",
    "SweepResult",
    "collect_reports",
    "list_alerts",
    "raise_alerts",
    "sweep",
]
