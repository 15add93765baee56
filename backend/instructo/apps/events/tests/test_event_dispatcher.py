from __future__ import annotations

from datetime import datetime, timedelta, timezone

from instructo.apps.events import dispatcher, handlers, outbox
from instructo.apps.events import models as event_models
from instructo.apps.notifications import models as notification_models
from instructo.apps.trainees import services as trainee_services

EventStatus = event_models.DomainEventStatus


def _later(minutes: int = 1) -> datetime:
    return datetime.now(timezone.utc) + timedelta(minutes=minutes)


def _notifications_for(db_session, user_id):
    return (
        db_session.query(notification_models.Notification)
        .filter(notification_models.Notification.recipient_id == user_id)
        .all()
    )


def test_trainee_events_become_notifications(db_session, admin_user, instructor_user, trainee_payload):
    trainee = trainee_services.create_trainee(db_session, instructor=instructor_user, data=trainee_payload())
    trainee_services.approve(db_session, trainee_id=trainee.id, admin=admin_user, comments="ok")

    processed = dispatcher.dispatch_pending_events(db_session, now=_later())

    assert processed == 2
    statuses = {e.event_type: e.status for e in db_session.query(event_models.DomainEvent).all()}
    assert statuses == {"trainee.created": EventStatus.PROCESSED, "trainee.approved": EventStatus.PROCESSED}

    admin_inbox = _notifications_for(db_session, admin_user.id)
    assert [n.type for n in admin_inbox] == [notification_models.NotificationType.TRAINEE_CREATED]
    assert admin_inbox[0].related_entity_id == trainee.id

    instructor_inbox = _notifications_for(db_session, instructor_user.id)
    assert [n.type for n in instructor_inbox] == [notification_models.NotificationType.TRAINEE_APPROVED]
    assert instructor_inbox[0].message == "Trainee A. Sharma has been approved. Comments: ok"
    assert instructor_inbox[0].recipient_type.value == "instructor"

    # Nothing left to do.
    assert dispatcher.dispatch_pending_events(db_session, now=_later(2)) == 0


def test_project_completed_emails_departments(db_session, admin_user, monkeypatch):
    monkeypatch.setenv("TRAINING_DEPT_EMAIL", "training@company.io")
    monkeypatch.setenv("HRD_DEPT_EMAIL", "hrd@company.io")
    outbox.emit(
        db_session,
        event_type=outbox.PROJECT_COMPLETED,
        aggregate_type="project",
        aggregate_id="project-1",
        payload={
            "project_name": "Inventory App",
            "trainee_name": "A. Sharma",
            "instructor_name": "Ravi",
            "performance_rating": 8,
            "end_date": "2024-03-01",
            "project_report_path": "trainees/t/projects/p/report.pdf",
            "attendance_document_path": "trainees/t/projects/p/attendance.pdf",
        },
    )
    db_session.commit()

    dispatcher.dispatch_pending_events(db_session, now=_later())

    logs = db_session.query(notification_models.EmailLog).order_by(notification_models.EmailLog.recipient).all()
    assert [log.recipient for log in logs] == ["hrd@company.io", "training@company.io"]
    assert {log.template_key for log in logs} == {"project_completed"}
    # The test environment has no email provider configured.
    assert {log.status for log in logs} == {notification_models.EmailStatus.SKIPPED_NO_PROVIDER}
    assert [n.type for n in _notifications_for(db_session, admin_user.id)] == [
        notification_models.NotificationType.PROJECT_COMPLETED
    ]


def test_failing_handler_is_retried_with_backoff(db_session, monkeypatch):
    calls = []

    def flaky(db, event):
        calls.append(event.id)
        raise RuntimeError("recipient store offline")

    monkeypatch.setitem(handlers.HANDLERS, "test.flaky", flaky)
    event = outbox.emit(db_session, event_type="test.flaky", aggregate_type="test", aggregate_id="x")
    db_session.commit()

    now = _later()
    dispatcher.dispatch_pending_events(db_session, now=now)
    db_session.refresh(event)

    assert event.status == EventStatus.FAILED
    assert event.attempt_count == 1
    assert event.last_error == "recipient store offline"
    assert event.next_attempt_at is not None

    # Not due yet: the backoff window has not passed.
    assert dispatcher.dispatch_pending_events(db_session, now=now) == 0
    assert len(calls) == 1


def test_event_is_dead_lettered_after_max_attempts(db_session, monkeypatch):
    def always_fails(db, event):
        raise RuntimeError("nope")

    monkeypatch.setitem(handlers.HANDLERS, "test.broken", always_fails)
    event = outbox.emit(db_session, event_type="test.broken", aggregate_type="test", aggregate_id="x")
    db_session.commit()

    now = _later()
    for attempt in range(dispatcher.MAX_ATTEMPTS):
        now = now + timedelta(days=1)
        dispatcher.dispatch_pending_events(db_session, now=now)

    db_session.refresh(event)
    assert event.status == EventStatus.DEAD_LETTER
    assert event.attempt_count == dispatcher.MAX_ATTEMPTS
    assert event.next_attempt_at is None
    assert dispatcher.dispatch_pending_events(db_session, now=now + timedelta(days=30)) == 0


def test_unknown_event_type_is_dead_lettered(db_session):
    event = outbox.emit(db_session, event_type="test.unknown", aggregate_type="test", aggregate_id="x")
    db_session.commit()

    dispatcher.dispatch_pending_events(db_session, now=_later())
    db_session.refresh(event)

    assert event.status == EventStatus.DEAD_LETTER
    assert "No handler registered" in event.last_error


def test_failure_does_not_block_other_events(db_session, admin_user, monkeypatch):
    def always_fails(db, event):
        raise RuntimeError("nope")

    monkeypatch.setitem(handlers.HANDLERS, "test.broken", always_fails)
    broken = outbox.emit(db_session, event_type="test.broken", aggregate_type="test", aggregate_id="x")
    fine = outbox.emit(
        db_session,
        event_type=outbox.ACCOUNT_CREATED,
        aggregate_type="user",
        aggregate_id=admin_user.id,
        payload={"user_id": admin_user.id, "role": "admin", "email": admin_user.email},
    )
    db_session.commit()

    dispatcher.dispatch_pending_events(db_session, now=_later())
    db_session.refresh(broken)
    db_session.refresh(fine)

    assert broken.status == EventStatus.FAILED
    assert fine.status == EventStatus.PROCESSED
    assert [n.type for n in _notifications_for(db_session, admin_user.id)] == [
        notification_models.NotificationType.ACCOUNT_CREATED
    ]


def test_backoff_grows_exponentially():
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    first = dispatcher._compute_next_attempt(now, 1) - now
    third = dispatcher._compute_next_attempt(now, 3) - now
    assert third == first * 4


def test_overlapping_dispatch_delivers_an_event_once(
    db_session, admin_user, instructor_user, trainee_payload, monkeypatch
):
    trainee_services.create_trainee(db_session, instructor=instructor_user, data=trainee_payload())
    now = _later()
    nested_runs = []
    real_handler = handlers.HANDLERS[outbox.TRAINEE_CREATED]

    def handler_with_second_dispatcher(db, event):
        # Another dispatcher wakes up while this event is being handled.
        nested_runs.append(dispatcher.dispatch_pending_events(db, now=now))
        real_handler(db, event)

    monkeypatch.setitem(handlers.HANDLERS, outbox.TRAINEE_CREATED, handler_with_second_dispatcher)

    assert dispatcher.dispatch_pending_events(db_session, now=now) == 1
    assert nested_runs == [0]
    assert len(_notifications_for(db_session, admin_user.id)) == 1
    event = db_session.query(event_models.DomainEvent).one()
    assert event.status == EventStatus.PROCESSED
    assert event.attempt_count == 1


def test_claimed_event_is_skipped_until_its_lease_expires(db_session, admin_user):
    event = outbox.emit(
        db_session,
        event_type=outbox.ACCOUNT_CREATED,
        aggregate_type="user",
        aggregate_id=admin_user.id,
        payload={"user_id": admin_user.id, "role": "admin"},
    )
    db_session.commit()
    now = _later()
    assert dispatcher._claim(db_session, event.id, now=now) is True
    # A second claim on the same row loses.
    assert dispatcher._claim(db_session, event.id, now=now) is False

    assert dispatcher.dispatch_pending_events(db_session, now=now) == 0
    assert _notifications_for(db_session, admin_user.id) == []

    # The claiming dispatcher died; once the lease runs out the event is retried.
    after_lease = now + timedelta(seconds=dispatcher.LEASE_SEC + 1)
    assert dispatcher.dispatch_pending_events(db_session, now=after_lease) == 1
    db_session.refresh(event)
    assert event.status == EventStatus.PROCESSED
    assert len(_notifications_for(db_session, admin_user.id)) == 1
