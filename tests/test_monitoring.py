"""Tests for webhook statistics, rule evaluation and alert lifecycle."""

from __future__ import annotations

from datetime import timedelta

import pytest

from notifyhub.application.use_cases.monitoring import (
    compute_stats,
    dashboard_data,
    default_rules,
    evaluate,
    list_alerts,
    override_threshold,
    seed_default_rules,
    success_rate,
    sweep,
)
from notifyhub.domain.entities import (
    ALERT_KIND_HIGH_FAILURE_RATE,
    ALERT_KIND_LOW_SUCCESS_RATE,
    ALERT_KIND_NO_RECENT_EVENTS,
    ALERT_KIND_SLOW_PROCESSING,
    ALERT_KIND_STUCK_PENDING,
    ALERT_STATUS_OPEN,
    ALERT_STATUS_RESOLVED,
    SEVERITY_CRITICAL,
    WEBHOOK_STATUS_FAILED,
    WEBHOOK_STATUS_PENDING,
    WEBHOOK_STATUS_PROCESSED,
    WebhookEvent,
)
from notifyhub.infrastructure.repositories import (
    AlertRuleRepository,
    NotificationRequestRepository,
    WebhookEventRepository,
)


@pytest.fixture()
def record_events(session):
    counter = {"value": 0}

    def _record(gateway: str, status: str, received_at, *, count: int = 1, latency: float = 1.0):
        repository = WebhookEventRepository(session)
        for _ in range(count):
            counter["value"] += 1
            repository.create(
                WebhookEvent(
                    id=None,
                    gateway=gateway,
                    external_event_id=f"{gateway}-{counter['value']}",
                    event_type="charge.succeeded",
                    status=status,
                    received_at=received_at,
                    processed_at=received_at + timedelta(seconds=latency)
                    if status == WEBHOOK_STATUS_PROCESSED
                    else None,
                )
            )

    return _record


def test_success_rate_of_empty_window_is_full():
    assert success_rate(0, 0) == 100.0
    assert success_rate(14, 20) == 70.0
    assert success_rate(2, 3) == 66.67


def test_empty_database_raises_no_alerts(session, clock, settings):
    report = compute_stats(session, timedelta(hours=24), now=clock.now())

    assert report.overall.total == 0
    assert report.overall.success_rate == 100.0
    assert report.gateways == {}
    assert evaluate({report.window_seconds: report}, default_rules(settings), now=clock.now()) == []


def test_stats_are_grouped_per_gateway(session, clock, record_events):
    now = clock.now()
    record_events("stripe", WEBHOOK_STATUS_PROCESSED, now - timedelta(minutes=10), count=3, latency=2)
    record_events("stripe", WEBHOOK_STATUS_FAILED, now - timedelta(minutes=5))
    record_events("paystack", WEBHOOK_STATUS_PROCESSED, now - timedelta(hours=3), latency=4)
    record_events("paystack", WEBHOOK_STATUS_PROCESSED, now - timedelta(days=3))

    report = compute_stats(session, timedelta(hours=24), now=now)

    assert report.gateways["stripe"].total == 4
    assert report.gateways["stripe"].success_rate == 75.0
    assert report.gateways["stripe"].avg_processing_seconds == 2.0
    assert report.gateways["paystack"].total == 1
    assert report.overall.total == 5
    assert report.overall.processed == 4
    assert report.overall.seconds_since_last_event == 300.0


def test_six_failures_in_an_hour_raise_exactly_one_high_failure_alert(
    session, clock, settings, record_events, make_user, in_app_engine
):
    admin = make_user(role="admin")
    seed_default_rules(session, settings)
    now = clock.now()
    record_events("stripe", WEBHOOK_STATUS_PROCESSED, now - timedelta(minutes=30), count=14)
    record_events("stripe", WEBHOOK_STATUS_FAILED, now - timedelta(minutes=20), count=6)

    result = sweep(session, now=now, engine=in_app_engine, settings=settings)

    high_failure = [a for a in result.changes.opened if a.kind == ALERT_KIND_HIGH_FAILURE_RATE]
    assert len(high_failure) == 1
    (alert,) = high_failure
    assert alert.gateway == "stripe"
    assert alert.severity == SEVERITY_CRITICAL
    assert alert.payload["value"] == 6

    low_rate = {a.gateway for a in result.changes.opened if a.kind == ALERT_KIND_LOW_SUCCESS_RATE}
    assert low_rate == {None, "stripe"}

    notified = list_alerts(session, status=ALERT_STATUS_OPEN)
    assert all(item.notification_request_id is not None for item in notified)
    request = NotificationRequestRepository(session).get_by_idempotency_key(f"alert:{alert.id}")
    assert request is not None
    assert request.recipient_ids == [admin.id]


def test_alerts_are_deduplicated_and_resolved(
    session, clock, settings, record_events, in_app_engine
):
    seed_default_rules(session, settings)
    now = clock.now()
    record_events("stripe", WEBHOOK_STATUS_PROCESSED, now - timedelta(minutes=30), count=14)
    record_events("stripe", WEBHOOK_STATUS_FAILED, now - timedelta(minutes=20), count=6)

    first = sweep(session, now=now, engine=in_app_engine, settings=settings)
    second = sweep(
        session, now=now + timedelta(minutes=5), engine=in_app_engine, settings=settings
    )

    assert second.changes.opened == []
    assert len(second.changes.refreshed) == len(first.changes.opened)
    open_before = list_alerts(session, status=ALERT_STATUS_OPEN)
    assert len(open_before) == len(first.changes.opened)

    later = sweep(session, now=now + timedelta(hours=2), engine=in_app_engine, settings=settings)

    resolved_kinds = {alert.kind for alert in later.changes.resolved}
    assert ALERT_KIND_HIGH_FAILURE_RATE in resolved_kinds
    resolved = [a for a in list_alerts(session) if a.kind == ALERT_KIND_HIGH_FAILURE_RATE]
    assert [a.status for a in resolved] == [ALERT_STATUS_RESOLVED]


def test_stuck_pending_events_raise_alert(session, clock, settings, record_events):
    now = clock.now()
    record_events("paypal", WEBHOOK_STATUS_PENDING, now - timedelta(minutes=12))
    record_events("paypal", WEBHOOK_STATUS_PENDING, now - timedelta(minutes=1))

    result = sweep(session, now=now, settings=settings, rules=default_rules(settings))

    stuck = [a for a in result.changes.opened if a.kind == ALERT_KIND_STUCK_PENDING]
    assert len(stuck) == 1
    assert stuck[0].payload["value"] == 1


def test_quiet_gateways_raise_no_recent_events_alert(session, clock, settings, record_events):
    now = clock.now()
    record_events("stripe", WEBHOOK_STATUS_PROCESSED, now - timedelta(hours=3), count=2)

    result = sweep(session, now=now, settings=settings, rules=default_rules(settings))

    (quiet,) = [a for a in result.changes.opened if a.kind == ALERT_KIND_NO_RECENT_EVENTS]
    assert quiet.gateway is None
    assert quiet.payload["value"] == 3 * 3600
    assert "3.0h" in quiet.message


def test_recent_or_never_received_events_raise_no_quiet_alert(
    session, clock, settings, record_events
):
    now = clock.now()
    rules = default_rules(settings)

    empty = sweep(session, now=now, settings=settings, rules=rules)
    record_events("stripe", WEBHOOK_STATUS_PROCESSED, now - timedelta(minutes=90))
    recent = sweep(session, now=now, settings=settings, rules=rules)

    assert empty.changes.opened == []
    assert not any(a.kind == ALERT_KIND_NO_RECENT_EVENTS for a in recent.changes.opened)


@pytest.mark.parametrize(("latency", "alerted"), [(30.0, True), (10.0, False), (4.0, False)])
def test_slow_processing_alert_follows_average_latency(
    session, clock, settings, record_events, latency, alerted
):
    now = clock.now()
    record_events("paystack", WEBHOOK_STATUS_PROCESSED, now - timedelta(minutes=20), count=3,
                  latency=latency)

    result = sweep(session, now=now, settings=settings, rules=default_rules(settings))

    slow = [a for a in result.changes.opened if a.kind == ALERT_KIND_SLOW_PROCESSING]
    assert bool(slow) is alerted
    if alerted:
        assert slow[0].gateway is None
        assert slow[0].payload["value"] == latency


def test_threshold_override_changes_verdict(session, clock, settings, record_events):
    now = clock.now()
    record_events("stripe", WEBHOOK_STATUS_PROCESSED, now - timedelta(minutes=30), count=9)
    record_events("stripe", WEBHOOK_STATUS_FAILED, now - timedelta(minutes=30))
    rules = default_rules(settings)
    report = compute_stats(session, timedelta(hours=24), now=now)
    reports = {report.window_seconds: report, 3600: compute_stats(session, timedelta(hours=1), now=now)}

    strict = evaluate(reports, rules, now=now)
    lenient = evaluate(reports, override_threshold(rules, ALERT_KIND_LOW_SUCCESS_RATE, 80), now=now)

    assert any(c.kind == ALERT_KIND_LOW_SUCCESS_RATE for c in strict)
    assert not any(c.kind == ALERT_KIND_LOW_SUCCESS_RATE for c in lenient)


def test_seed_default_rules_is_idempotent(session, settings):
    created = seed_default_rules(session, settings)
    again = seed_default_rules(session, settings)

    assert len(created) == len(default_rules(settings))
    assert again == []
    assert len(AlertRuleRepository(session).list(active_only=True)) == len(created)


def test_dashboard_reports_health(session, clock, settings, record_events):
    now = clock.now()
    record_events("stripe", WEBHOOK_STATUS_FAILED, now - timedelta(minutes=10), count=7)
    record_events("stripe", WEBHOOK_STATUS_PROCESSED, now - timedelta(days=2), count=3)

    data = dashboard_data(session, now=now, settings=settings)

    assert data.failures_last_hour == 7
    assert data.volume["last_hour"] == 7
    assert data.volume["last_7d"] == 10
    assert data.peak_hour_count == 7
    assert len(data.recent_events) == 5
    severities = [severity for severity, _ in data.health]
    assert SEVERITY_CRITICAL in severities
