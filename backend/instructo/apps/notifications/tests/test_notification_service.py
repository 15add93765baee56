from __future__ import annotations

import pytest

from instructo.apps.notifications import models as notification_models
from instructo.apps.notifications import router as notification_router
from instructo.apps.notifications import service as notification_service
from instructo.errors import Forbidden, NotFound, UnknownRecipient

NotificationType = notification_models.NotificationType


def _notify(db_session, user, type=NotificationType.GENERAL, title="Heads up"):
    notification = notification_service.notify(
        db_session,
        recipient_id=user.id,
        type=type,
        title=title,
        message=f"{title} for {user.name}",
    )
    db_session.commit()
    return notification


def test_notify_unknown_recipient(db_session):
    with pytest.raises(UnknownRecipient) as excinfo:
        notification_service.notify(
            db_session,
            recipient_id="nobody",
            type=NotificationType.GENERAL,
            title="Hello",
            message="Nobody home",
        )
    assert excinfo.value.status_code == 404


def test_notify_admins_skips_inactive(db_session, admin_user, user_factory):
    user_factory(role="admin", email="retired@instructo.io", name="Retired", is_active=False)

    created = notification_service.notify_admins(
        db_session,
        type=NotificationType.PROGRESS_SHARED,
        title="Progress shared",
        message="Progress shared",
    )

    assert [n.recipient_id for n in created] == [admin_user.id]
    assert created[0].recipient_type.value == "admin"


def test_list_filters_and_counts(db_session, instructor_user, admin_user):
    first = _notify(db_session, instructor_user, NotificationType.TRAINEE_APPROVED, "Approved")
    _notify(db_session, instructor_user, NotificationType.PROGRESS_REVIEWED, "Reviewed")
    _notify(db_session, admin_user)
    notification_service.mark_read(db_session, notification_id=first.id, requester_id=instructor_user.id)

    items, total = notification_service.list_for_user(db_session, user_id=instructor_user.id)
    assert total == 2
    assert {n.title for n in items} == {"Approved", "Reviewed"}

    unread, unread_total = notification_service.list_for_user(
        db_session,
        user_id=instructor_user.id,
        is_read=False,
    )
    assert unread_total == 1
    assert unread[0].title == "Reviewed"

    stats = notification_service.stats(db_session, user_id=instructor_user.id)
    assert stats == {
        "total": 2,
        "unread": 1,
        "by_type": {"trainee_approved": 1, "progress_reviewed": 1},
    }


def test_mark_read_is_owner_only(db_session, instructor_user, other_instructor):
    notification = _notify(db_session, instructor_user)

    with pytest.raises(Forbidden):
        notification_service.mark_read(db_session, notification_id=notification.id, requester_id=other_instructor.id)
    with pytest.raises(NotFound):
        notification_service.mark_read(db_session, notification_id="missing", requester_id=instructor_user.id)

    read = notification_service.mark_read(
        db_session,
        notification_id=notification.id,
        requester_id=instructor_user.id,
    )
    assert read.is_read is True
    first_read_at = read.read_at

    again = notification_service.mark_read(
        db_session,
        notification_id=notification.id,
        requester_id=instructor_user.id,
    )
    assert again.read_at == first_read_at


def test_mark_all_read_only_touches_own_rows(db_session, instructor_user, admin_user):
    mine = [_notify(db_session, instructor_user, title=f"n{i}") for i in range(3)]
    theirs = _notify(db_session, admin_user)

    result = notification_router.mark_all_notifications_read(db=db_session, current_user=instructor_user)

    assert result["data"] == {"updated": 3}
    assert all(n.is_read for n in mine)
    db_session.refresh(theirs)
    assert theirs.is_read is False
    assert notification_service.unread_count(db_session, user_id=instructor_user.id) == 0


def test_delete_notification(db_session, instructor_user, other_instructor):
    notification = _notify(db_session, instructor_user)

    with pytest.raises(Forbidden):
        notification_service.delete_notification(
            db_session,
            notification_id=notification.id,
            requester_id=other_instructor.id,
        )

    notification_service.delete_notification(
        db_session,
        notification_id=notification.id,
        requester_id=instructor_user.id,
    )
    assert db_session.get(notification_models.Notification, notification.id) is None


def test_router_list_includes_unread_count(db_session, instructor_user):
    _notify(db_session, instructor_user, title="One")
    _notify(db_session, instructor_user, title="Two")

    result = notification_router.list_notifications(
        is_read=None,
        type=None,
        limit=1,
        offset=0,
        db=db_session,
        current_user=instructor_user,
    )

    assert result["data"]["total"] == 2
    assert result["data"]["unread_count"] == 2
    assert len(result["data"]["items"]) == 1
