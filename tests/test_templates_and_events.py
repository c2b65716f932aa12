"""Tests for template rendering, domain event triggers and the in-app inbox."""

from __future__ import annotations

import pytest

from notifyhub.application.use_cases import (
    create_template,
    dispatch_domain_event,
    from_domain_event,
    list_inbox,
    mark_read,
    render_template,
    unread_count,
)
from notifyhub.domain.entities import (
    ATTEMPT_STATUS_DELIVERED,
    ATTEMPT_STATUS_SENT,
    REQUEST_STATUS_COMPLETED,
    NotificationRequest,
    NotificationTrigger,
)
from notifyhub.domain.errors import NotFoundError, ValidationError
from notifyhub.infrastructure.repositories import (
    NotificationRequestRepository,
    NotificationTriggerRepository,
)


@pytest.mark.parametrize(
    ("text", "context", "expected"),
    [
        ("Hi {{ name }}", {"name": "Amina"}, "Hi Amina"),
        ("Lesson {{lesson.subject}} at {{ lesson.time }}", {"lesson": {"subject": "Maths", "time": "10:00"}}, "Lesson Maths at 10:00"),
        ("Hi {{ missing }}", {"name": "Amina"}, "Hi {{ missing }}"),
        ("Amount: {{ amount }}", {"amount": None}, "Amount: {{ amount }}"),
        ("No placeholders", {}, "No placeholders"),
    ],
)
def test_render_template(text, context, expected):
    assert render_template(text, context) == expected


def test_create_template_rejects_duplicates_and_bad_levels(session):
    create_template(session, name="booking-confirmed", title="Booked", body="See you")

    with pytest.raises(ValidationError):
        create_template(session, name="booking-confirmed", title="Again", body="Again")
    with pytest.raises(ValidationError):
        create_template(session, name="other", title="T", body="B", level="loud")


def test_submit_renders_named_template(session, make_user, in_app_engine):
    user = make_user()
    create_template(
        session,
        name="lesson-reminder",
        title="Reminder: {{ subject }}",
        body="Your {{ subject }} lesson with {{ tutor }} starts soon",
        channels=["in_app"],
    )

    request_id = in_app_engine.submit(
        session,
        NotificationRequest(
            id=None,
            title="",
            body="",
            recipient_ids=[user.id],
            template_name="lesson-reminder",
            metadata={"subject": "Physics", "tutor": "Mr. Otieno"},
        ),
    )

    request = NotificationRequestRepository(session).get(request_id)
    assert request.title == "Reminder: Physics"
    assert request.body == "Your Physics lesson with Mr. Otieno starts soon"
    assert request.channels == ["in_app"]


def test_submit_with_unknown_template_fails(session, make_user, in_app_engine):
    user = make_user()

    with pytest.raises(NotFoundError):
        in_app_engine.submit(
            session,
            NotificationRequest(
                id=None, title="", body="", recipient_ids=[user.id], template_name="nope"
            ),
        )


def _booking_trigger(session, template_id: int, **fields) -> NotificationTrigger:
    values = {
        "name": "notify-tutor-on-booking",
        "event": "booking.created",
        "template_id": template_id,
        "recipient_roles": [],
        "channels": ["in_app"],
    }
    values.update(fields)
    return NotificationTriggerRepository(session).create(NotificationTrigger(id=None, **values))


def test_domain_event_becomes_notification_through_trigger(
    session, make_user, in_app_engine, clock
):
    tutor = make_user(role="tutor")
    template = create_template(
        session,
        name="booking-created",
        title="New booking from {{ student }}",
        body="{{ student }} booked {{ subject }}",
    )
    trigger = _booking_trigger(session, template.id)

    data = {"event_id": "bk-1", "user_id": tutor.id, "student": "Wanjiru", "subject": "Chemistry"}
    request_ids = dispatch_domain_event(session, in_app_engine, "booking.created", data)
    replayed = dispatch_domain_event(session, in_app_engine, "booking.created", data)

    assert len(request_ids) == 1
    assert replayed == request_ids
    request = NotificationRequestRepository(session).get(request_ids[0])
    assert request.title == "New booking from Wanjiru"
    assert request.idempotency_key == f"event:booking.created:bk-1:{trigger.id}"
    assert request.recipient_ids == [tutor.id]


def test_trigger_conditions_filter_events(session, make_user):
    make_user(role="admin")
    template = create_template(session, name="refund", title="Refund", body="Refund of {{ amount }}")
    _booking_trigger(
        session,
        template.id,
        name="large-refunds",
        event="payment.refunded",
        recipient_roles=["admin"],
        conditions={"currency": ["KES", "USD"], "flagged": True},
    )

    assert from_domain_event(session, "payment.refunded", {"currency": "KES", "flagged": True})
    assert not from_domain_event(session, "payment.refunded", {"currency": "EUR", "flagged": True})
    assert not from_domain_event(session, "payment.refunded", {"currency": "USD"})
    assert not from_domain_event(session, "booking.created", {"currency": "USD", "flagged": True})


def test_reading_in_app_notification_confirms_delivery(session, make_user, in_app_engine, clock):
    student = make_user()
    request_id = in_app_engine.submit(
        session,
        NotificationRequest(
            id=None, title="Payment received", body="Thanks!", recipient_ids=[student.id],
            channels=["in_app"],
        ),
    )
    in_app_engine.run_pending(clock.now())

    (attempt,) = in_app_engine.get_status(session, request_id)
    assert attempt.status == ATTEMPT_STATUS_SENT
    assert attempt.provider_message_id.startswith("notification:")
    assert unread_count(session, student.id) == 1
    (notification,) = list_inbox(session, student.id, unread_only=True)
    assert notification.title == "Payment received"

    changed = mark_read(session, in_app_engine, student.id, [notification.id])

    assert [item.id for item in changed] == [notification.id]
    assert unread_count(session, student.id) == 0
    assert in_app_engine.get_status(session, request_id)[0].status == ATTEMPT_STATUS_DELIVERED
    assert NotificationRequestRepository(session).get(request_id).status == REQUEST_STATUS_COMPLETED
    assert mark_read(session, in_app_engine, student.id, [notification.id]) == []


def test_mark_read_ignores_other_users_notifications(session, make_user, in_app_engine, clock):
    owner = make_user()
    intruder = make_user()
    in_app_engine.submit(
        session,
        NotificationRequest(
            id=None, title="Private", body="Only for you", recipient_ids=[owner.id],
            channels=["in_app"],
        ),
    )
    in_app_engine.run_pending(clock.now())
    (notification,) = list_inbox(session, owner.id)

    assert mark_read(session, in_app_engine, intruder.id, [notification.id]) == []
    assert unread_count(session, owner.id) == 1
