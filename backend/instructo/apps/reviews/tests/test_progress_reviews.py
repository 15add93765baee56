from __future__ import annotations

import pytest
from fastapi import BackgroundTasks

from instructo.apps.events import models as event_models
from instructo.apps.reviews import models as review_models
from instructo.apps.reviews import router as review_router
from instructo.apps.reviews import schemas as review_schemas
from instructo.apps.reviews import services as review_services
from instructo.apps.trainees import services as trainee_services
from instructo.errors import Conflict, Forbidden, InvalidTransition, NotFound


@pytest.fixture()
def trainee(db_session, admin_user, instructor_user, trainee_payload):
    created = trainee_services.create_trainee(db_session, instructor=instructor_user, data=trainee_payload())
    return trainee_services.approve(db_session, trainee_id=created.id, admin=admin_user)


def test_share_and_complete_review(db_session, admin_user, instructor_user, trainee):
    review = review_services.share_progress(
        db_session,
        trainee_id=trainee.id,
        instructor=instructor_user,
        notes="Finished module 2",
    )

    assert review.status == review_models.ProgressReviewStatus.IN_REVIEW
    assert review.trainee_name == "A. Sharma"
    assert review.shared_by_name == "Ravi Instructor"
    assert review.shared_at is not None

    in_review = review_services.list_reviews(
        db_session,
        status=review_models.ProgressReviewStatus.IN_REVIEW,
    )
    assert [r.id for r in in_review] == [review.id]

    done = review_services.complete_review(
        db_session,
        review_id=review.id,
        admin=admin_user,
        comments="Good pace",
    )
    assert done.status == review_models.ProgressReviewStatus.COMPLETED
    assert done.reviewed_by_id == admin_user.id
    assert done.review_comments == "Good pace"
    assert done.reviewed_at is not None

    events = [
        e.event_type
        for e in db_session.query(event_models.DomainEvent)
        .filter(event_models.DomainEvent.aggregate_type == "progress_review")
        .order_by(event_models.DomainEvent.created_at.asc(), event_models.DomainEvent.id.asc())
        .all()
    ]
    assert events == ["progress.shared", "progress_review.completed"]

    with pytest.raises(InvalidTransition):
        review_services.complete_review(db_session, review_id=review.id, admin=admin_user)


def test_share_requires_approved_owned_trainee(db_session, instructor_user, other_instructor, trainee_payload):
    pending = trainee_services.create_trainee(db_session, instructor=instructor_user, data=trainee_payload())

    with pytest.raises(Conflict):
        review_services.share_progress(db_session, trainee_id=pending.id, instructor=instructor_user)
    with pytest.raises(Forbidden):
        review_services.share_progress(db_session, trainee_id=pending.id, instructor=other_instructor)


def test_complete_unknown_review(db_session, admin_user):
    with pytest.raises(NotFound):
        review_services.complete_review(db_session, review_id="missing", admin=admin_user)


def test_router_accepts_empty_review_body(db_session, admin_user, instructor_user, trainee):
    shared = review_router.share_progress(
        review_schemas.ShareProgressRequest(trainee_id=trainee.id),
        background_tasks=BackgroundTasks(),
        db=db_session,
        current_user=instructor_user,
    )["data"]

    tasks = BackgroundTasks()
    result = review_router.complete_progress_review(
        shared.id,
        background_tasks=tasks,
        payload=None,
        db=db_session,
        current_user=admin_user,
    )

    assert result["data"].status == review_models.ProgressReviewStatus.COMPLETED
    assert result["data"].review_comments is None
    assert len(tasks.tasks) == 1
