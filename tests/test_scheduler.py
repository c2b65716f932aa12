"""Tests for scheduler ticks and recurrence arithmetic."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from notifyhub.application.use_cases import Scheduler
from notifyhub.application.use_cases.scheduler import next_occurrence
from notifyhub.domain.entities import (
    ATTEMPT_STATUS_IN_FLIGHT,
    ATTEMPT_STATUS_PENDING,
    ATTEMPT_STATUS_SENT,
    FREQUENCY_DAILY,
    FREQUENCY_MONTHLY,
    FREQUENCY_ONE_TIME,
    FREQUENCY_WEEKLY,
    REQUEST_STATUS_DISPATCHING,
    REQUEST_STATUS_SCHEDULED,
    NotificationRequest,
)
from notifyhub.infrastructure.repositories import (
    DeliveryAttemptRepository,
    NotificationRequestRepository,
)

from .conftest import FakeChannel


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    ("scheduled_at", "frequency", "after", "expected"),
    [
        (_utc(2026, 3, 1, 8), FREQUENCY_ONE_TIME, _utc(2026, 3, 1, 9), None),
        (_utc(2026, 3, 1, 8), FREQUENCY_DAILY, _utc(2026, 3, 1, 9), _utc(2026, 3, 2, 8)),
        (_utc(2026, 3, 1, 8), FREQUENCY_DAILY, _utc(2026, 3, 4, 9), _utc(2026, 3, 5, 8)),
        (_utc(2026, 3, 1, 8), FREQUENCY_WEEKLY, _utc(2026, 3, 1, 8), _utc(2026, 3, 8, 8)),
        (_utc(2026, 1, 31, 8), FREQUENCY_MONTHLY, _utc(2026, 2, 1), _utc(2026, 2, 28, 8)),
        (_utc(2026, 12, 15, 8), FREQUENCY_MONTHLY, _utc(2026, 12, 20), _utc(2027, 1, 15, 8)),
    ],
)
def test_next_occurrence(scheduled_at, frequency, after, expected):
    assert next_occurrence(scheduled_at, frequency, after=after) == expected


@pytest.mark.parametrize(
    ("scheduled_at", "anchor", "after", "expected"),
    [
        (_utc(2026, 2, 28, 8), _utc(2026, 1, 31, 8), _utc(2026, 2, 28, 8), _utc(2026, 3, 31, 8)),
        (_utc(2026, 4, 30, 8), _utc(2026, 1, 31, 8), _utc(2026, 6, 1), _utc(2026, 6, 30, 8)),
        (_utc(2027, 2, 28, 8), _utc(2024, 2, 29, 8), _utc(2027, 3, 1), _utc(2027, 3, 29, 8)),
    ],
)
def test_monthly_occurrences_follow_the_series_anchor(scheduled_at, anchor, after, expected):
    assert (
        next_occurrence(scheduled_at, FREQUENCY_MONTHLY, after=after, anchor=anchor) == expected
    )


@pytest.fixture()
def scheduler_for(session_factory, clock, settings):
    def _build(engine, **kwargs) -> Scheduler:
        return Scheduler(session_factory, engine, clock=clock, settings=settings, **kwargs)

    return _build


def test_tick_releases_due_requests_and_dispatches(
    session, make_user, make_engine, scheduler_for, clock
):
    user = make_user()
    sms = FakeChannel("sms")
    engine = make_engine(sms)
    request_id = engine.submit(
        session,
        NotificationRequest(
            id=None,
            title="Exam tomorrow",
            body="Good luck!",
            recipient_ids=[user.id],
            channels=["sms"],
            scheduled_at=clock.now() + timedelta(minutes=30),
        ),
    )
    scheduler = scheduler_for(engine)

    early = scheduler.tick()
    assert early.released == []
    assert NotificationRequestRepository(session).get(request_id).status == REQUEST_STATUS_SCHEDULED

    clock.advance(minutes=30)
    report = scheduler.tick()

    assert report.ok
    assert report.released == [request_id]
    assert report.dispatch.sent == 1
    assert engine.get_status(session, request_id)[0].status == ATTEMPT_STATUS_SENT


def test_recurring_request_spawns_next_occurrence(
    session, make_user, make_engine, scheduler_for, clock
):
    user = make_user()
    engine = make_engine(FakeChannel("sms"))
    first_at = clock.now() + timedelta(minutes=1)
    request_id = engine.submit(
        session,
        NotificationRequest(
            id=None,
            title="Daily digest",
            body="Your lessons for today",
            recipient_ids=[user.id],
            channels=["sms"],
            scheduled_at=first_at,
            frequency=FREQUENCY_DAILY,
        ),
    )
    scheduler = scheduler_for(engine)

    clock.advance(minutes=1)
    report = scheduler.tick()
    again = scheduler.tick()

    assert report.released == [request_id]
    (spawned_id,) = report.spawned
    assert again.spawned == []
    spawned = NotificationRequestRepository(session).get(spawned_id)
    assert spawned.status == REQUEST_STATUS_SCHEDULED
    assert spawned.scheduled_at == first_at + timedelta(days=1)
    assert spawned.metadata["recurrence_of"] == request_id
    assert spawned.idempotency_key == f"recurrence:{request_id}:{spawned.scheduled_at.isoformat()}"


def test_monthly_series_keeps_its_day_across_short_months(
    session, make_user, make_engine, scheduler_for, clock
):
    user = make_user()
    engine = make_engine(FakeChannel("sms"))
    first_at = _utc(2026, 3, 31, 9)
    request_id = engine.submit(
        session,
        NotificationRequest(
            id=None,
            title="Monthly statement",
            body="Your statement is ready",
            recipient_ids=[user.id],
            channels=["sms"],
            scheduled_at=first_at,
            frequency=FREQUENCY_MONTHLY,
        ),
    )
    scheduler = scheduler_for(engine)
    repository = NotificationRequestRepository(session)

    spawned_at = []
    for due_at in (first_at, _utc(2026, 4, 30, 9), _utc(2026, 5, 31, 9)):
        clock.advance(due_at - clock.now())
        (spawned_id,) = scheduler.tick().spawned
        spawned = repository.get(spawned_id)
        spawned_at.append(spawned.scheduled_at)
        assert spawned.metadata["recurrence_of"] == request_id
        assert spawned.metadata["recurrence_anchor"] == first_at.isoformat()

    assert spawned_at == [_utc(2026, 4, 30, 9), _utc(2026, 5, 31, 9), _utc(2026, 6, 30, 9)]


def test_failing_step_does_not_stop_the_tick(
    session, make_user, make_engine, scheduler_for, clock
):
    user = make_user()
    engine = make_engine(FakeChannel("sms"))
    request_id = engine.submit(
        session,
        NotificationRequest(
            id=None, title="Hello", body="World", recipient_ids=[user.id], channels=["sms"]
        ),
    )

    def broken_sweep(*args, **kwargs):
        raise RuntimeError("monitoring database unavailable")

    scheduler = scheduler_for(engine, sweep_fn=broken_sweep)

    report = scheduler.tick()

    assert report.errors == ["sweep"]
    assert not report.ok
    assert report.dispatch.sent == 1
    assert engine.get_status(session, request_id)[0].status == ATTEMPT_STATUS_SENT

    # The sweep is retried on the next tick because it never completed.
    assert scheduler.tick().errors == ["sweep"]


def test_sweep_runs_on_its_own_interval(make_engine, scheduler_for, clock):
    calls: list[datetime] = []

    def counting_sweep(session, *, now, engine, settings):
        calls.append(now)

    scheduler = scheduler_for(make_engine(FakeChannel("sms")), sweep_fn=counting_sweep)

    scheduler.tick()
    clock.advance(seconds=60)
    scheduler.tick()
    clock.advance(seconds=300)
    scheduler.tick()

    assert len(calls) == 2


def test_stale_in_flight_attempts_are_requeued(
    session, make_user, make_engine, scheduler_for, clock
):
    user = make_user()
    engine = make_engine(FakeChannel("sms"))
    request_id = engine.submit(
        session,
        NotificationRequest(
            id=None, title="Hi", body="There", recipient_ids=[user.id], channels=["sms"]
        ),
    )
    (attempt,) = engine.get_status(session, request_id)
    DeliveryAttemptRepository(session).claim(attempt.id, now=clock.now() - timedelta(hours=1))
    assert engine.get_status(session, request_id)[0].status == ATTEMPT_STATUS_IN_FLIGHT

    report = scheduler_for(engine).tick()

    assert report.requeued == 1
    assert report.dispatch.sent == 1
    request = NotificationRequestRepository(session).get(request_id)
    assert request.status != REQUEST_STATUS_DISPATCHING
    assert engine.get_status(session, request_id)[0].status != ATTEMPT_STATUS_PENDING
