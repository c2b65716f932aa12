"""Alert rules and their pure evaluation against statistics."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from notifyhub.config import Settings, get_settings
from notifyhub.domain.entities import (
    ALERT_KIND_HIGH_FAILURE_RATE,
    ALERT_KIND_LOW_SUCCESS_RATE,
    ALERT_KIND_NO_RECENT_EVENTS,
    ALERT_KIND_SLOW_PROCESSING,
    ALERT_KIND_STUCK_PENDING,
    SEVERITY_CRITICAL,
    SEVERITY_WARNING,
    AlertRule,
)
from notifyhub.infrastructure.repositories import AlertRuleRepository

from .stats import StatsReport, WindowStats

logger = logging.getLogger(__name__)

HOUR = 3600
DAY = 24 * HOUR

_SEVERITY_RANK = {SEVERITY_WARNING: 0, SEVERITY_CRITICAL: 1}


def default_rules(settings: Settings | None = None) -> list[AlertRule]:
    """Rules installed on startup; thresholds follow the settings."""

    settings = settings or get_settings()
    return [
        AlertRule(
            id=None,
            name="low-success-rate-global",
            kind=ALERT_KIND_LOW_SUCCESS_RATE,
            metric="success_rate",
            comparison="lt",
            threshold=settings.success_rate_threshold,
            window_seconds=DAY,
            severity=SEVERITY_WARNING,
        ),
        AlertRule(
            id=None,
            name="low-success-rate-gateway",
            kind=ALERT_KIND_LOW_SUCCESS_RATE,
            metric="success_rate",
            comparison="lt",
            threshold=settings.success_rate_threshold,
            window_seconds=DAY,
            severity=SEVERITY_WARNING,
            per_gateway=True,
        ),
        AlertRule(
            id=None,
            name="high-failure-rate",
            kind=ALERT_KIND_HIGH_FAILURE_RATE,
            metric="failed",
            comparison="gt",
            threshold=5,
            window_seconds=HOUR,
            severity=SEVERITY_CRITICAL,
            per_gateway=True,
        ),
        AlertRule(
            id=None,
            name="stuck-pending",
            kind=ALERT_KIND_STUCK_PENDING,
            metric="stuck_pending",
            comparison="gt",
            threshold=0,
            window_seconds=DAY,
            severity=SEVERITY_WARNING,
            per_gateway=True,
        ),
        AlertRule(
            id=None,
            name="no-recent-events",
            kind=ALERT_KIND_NO_RECENT_EVENTS,
            metric="seconds_since_last_event",
            comparison="gt",
            threshold=2 * HOUR,
            window_seconds=DAY,
            severity=SEVERITY_WARNING,
        ),
        AlertRule(
            id=None,
            name="slow-processing",
            kind=ALERT_KIND_SLOW_PROCESSING,
            metric="avg_processing_seconds",
            comparison="gt",
            threshold=10,
            window_seconds=DAY,
            severity=SEVERITY_WARNING,
        ),
    ]


def seed_default_rules(session: Session, settings: Settings | None = None) -> list[AlertRule]:
    """Insert the default rules that are missing; return the ones created."""

    repository = AlertRuleRepository(session)
    created: list[AlertRule] = []
    for rule in default_rules(settings):
        if repository.get_by_name(rule.name) is None:
            created.append(repository.create(rule))
    if created:
        logger.info("Seeded %s alert rule(s)", len(created))
    return created


def override_threshold(
    rules: Iterable[AlertRule], kind: str, threshold: float
) -> list[AlertRule]:
    return [replace(rule, threshold=threshold) if rule.kind == kind else rule for rule in rules]


@dataclass
class AlertCandidate:
    """A rule breach found by :func:`evaluate`; not yet an :class:`Alert`."""

    kind: str
    gateway: str | None
    severity: str
    metric: str
    value: float
    threshold: float
    window_seconds: int
    message: str
    rule_id: int | None = None
    rule_name: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def dedup_key(self) -> tuple[str, str | None]:
        return (self.kind, self.gateway)


def _describe_window(seconds: int) -> str:
    if seconds % DAY == 0:
        return f"{seconds // DAY * 24}h"
    if seconds % HOUR == 0:
        return f"{seconds // HOUR}h"
    return f"{seconds // 60}m"


def _message(rule: AlertRule, gateway: str | None, value: float, stats: WindowStats) -> str:
    scope = gateway or "all gateways"
    window = _describe_window(rule.window_seconds)
    if rule.kind == ALERT_KIND_LOW_SUCCESS_RATE:
        return f"Webhook success rate for {scope} is {value}% over {window} (threshold {rule.threshold:g}%)"
    if rule.kind == ALERT_KIND_HIGH_FAILURE_RATE:
        return f"{int(value)} failed webhooks for {scope} in the last {window} (limit {rule.threshold:g})"
    if rule.kind == ALERT_KIND_STUCK_PENDING:
        return f"{int(value)} webhook(s) for {scope} stuck in pending"
    if rule.kind == ALERT_KIND_NO_RECENT_EVENTS:
        hours = value / HOUR
        return f"No webhooks received for {scope} in {hours:.1f}h"
    if rule.kind == ALERT_KIND_SLOW_PROCESSING:
        return f"Average webhook processing time for {scope} is {value:.2f}s over {window} (limit {rule.threshold:g}s)"
    return f"{rule.metric} for {scope} is {value} ({rule.comparison} {rule.threshold:g})"


def _candidate(rule: AlertRule, gateway: str | None, stats: WindowStats) -> AlertCandidate | None:
    value = getattr(stats, rule.metric, None)
    if not rule.matches(value):
        return None
    return AlertCandidate(
        kind=rule.kind,
        gateway=gateway,
        severity=rule.severity,
        metric=rule.metric,
        value=value,
        threshold=rule.threshold,
        window_seconds=rule.window_seconds,
        message=_message(rule, gateway, value, stats),
        rule_id=rule.id,
        rule_name=rule.name,
        payload={
            "metric": rule.metric,
            "value": value,
            "threshold": rule.threshold,
            "window_seconds": rule.window_seconds,
            "stats": stats.to_dict(),
        },
    )


def evaluate(
    reports: Mapping[int, StatsReport],
    rules: Iterable[AlertRule],
    *,
    now: datetime | None = None,
) -> list[AlertCandidate]:
    """Return every breached rule as a candidate; no side effects.

    ``reports`` maps a window length in seconds to the stats of that
    window. Each rule reads the report of its own window, globally or per
    gateway. At most one candidate is returned per (kind, gateway); when
    several rules agree the most severe wins.
    """

    found: dict[tuple[str, str | None], AlertCandidate] = {}
    for rule in rules:
        if not rule.is_active:
            continue
        report = reports.get(rule.window_seconds)
        if report is None:
            logger.debug("No %ss report for rule %s", rule.window_seconds, rule.name)
            continue
        scopes = (
            list(report.gateways.items()) if rule.per_gateway else [(None, report.overall)]
        )
        for gateway, stats in scopes:
            candidate = _candidate(rule, gateway, stats)
            if candidate is None:
                continue
            if now is not None:
                candidate.payload["evaluated_at"] = now.isoformat()
            current = found.get(candidate.dedup_key)
            if current is None or _SEVERITY_RANK.get(candidate.severity, 0) > _SEVERITY_RANK.get(
                current.severity, 0
            ):
                found[candidate.dedup_key] = candidate
    return sorted(found.values(), key=lambda item: (item.kind, item.gateway or ""))


__all__ = [
    "AlertCandidate",
    "default_rules",
    "evaluate",
    "override_threshold",
    "seed_default_rules",
]
