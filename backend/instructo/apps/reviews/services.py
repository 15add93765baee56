from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from instructo.apps.accounts import models as account_models
from instructo.apps.events import outbox
from instructo.apps.trainees import models as trainee_models
from instructo.apps.trainees import services as trainee_services
from instructo.apps.workflow import apply_transition, compare_and_set_status
from instructo.errors import Conflict, NotFound

from . import models

logger = logging.getLogger(__name__)

SHAREABLE_TRAINEE_STATUSES = (
    trainee_models.TraineeStatus.APPROVED,
    trainee_models.TraineeStatus.ACTIVE,
    trainee_models.TraineeStatus.COMPLETED,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def share_progress(
    db: Session,
    *,
    trainee_id: str,
    instructor: account_models.User,
    notes: Optional[str] = None,
) -> models.ProgressReview:
    """Open an `in_review` record for an admin to sign off."""
    trainee = trainee_services.get_owned_trainee(db, trainee_id, instructor)
    if trainee.status not in SHAREABLE_TRAINEE_STATUSES:
        raise Conflict(
            "Only approved trainees can have their progress shared",
            detail=[{"field": "trainee_id", "reason": f"trainee is {trainee.status.value}"}],
        )

    review = models.ProgressReview(
        trainee_id=trainee.id,
        shared_by_id=instructor.id,
        status=models.ProgressReviewStatus.IN_REVIEW,
        notes=notes,
    )
    db.add(review)
    db.flush()
    outbox.emit(
        db,
        event_type=outbox.PROGRESS_SHARED,
        aggregate_type="progress_review",
        aggregate_id=review.id,
        payload={
            "review_id": review.id,
            "trainee_id": trainee.id,
            "trainee_name": trainee.name,
            "instructor_id": instructor.id,
            "instructor_name": instructor.name,
        },
        actor_user_id=instructor.id,
    )
    db.commit()
    db.refresh(review)
    logger.info("Progress of trainee %s shared for review (%s)", trainee.id, review.id)
    return review


def list_reviews(
    db: Session,
    *,
    status: Optional[models.ProgressReviewStatus] = None,
    trainee_id: Optional[str] = None,
) -> List[models.ProgressReview]:
    qs = db.query(models.ProgressReview)
    if status is not None:
        qs = qs.filter(models.ProgressReview.status == status)
    if trainee_id:
        qs = qs.filter(models.ProgressReview.trainee_id == trainee_id)
    return qs.order_by(models.ProgressReview.shared_at.desc(), models.ProgressReview.id.desc()).all()


def complete_review(
    db: Session,
    *,
    review_id: str,
    admin: account_models.User,
    comments: Optional[str] = None,
) -> models.ProgressReview:
    """`in_review -> completed`; tells the sharing instructor."""
    review = db.get(models.ProgressReview, review_id)
    if review is None:
        raise NotFound("Progress review not found")

    from_status = review.status
    values = {
        "reviewed_by_id": admin.id,
        "reviewed_at": _utcnow(),
        "review_comments": comments,
    }
    try:
        apply_transition(
            db,
            actor_user_id=admin.id,
            actor_role=admin.role.value,
            entity_type="progress_review",
            entity_id=review.id,
            from_state=from_status,
            to_state=models.ProgressReviewStatus.COMPLETED,
            before_obj={"id": review.id},
            after_obj={"id": review.id, "reviewed_by_id": admin.id},
        )
        compare_and_set_status(
            db,
            models.ProgressReview,
            entity_id=review.id,
            from_state=from_status,
            to_state=models.ProgressReviewStatus.COMPLETED,
            values=values,
        )
        outbox.emit(
            db,
            event_type=outbox.PROGRESS_REVIEW_COMPLETED,
            aggregate_type="progress_review",
            aggregate_id=review.id,
            payload={
                "review_id": review.id,
                "trainee_id": review.trainee_id,
                "trainee_name": review.trainee_name,
                "instructor_id": review.shared_by_id,
                "reviewer_id": admin.id,
                "comments": comments,
            },
            actor_user_id=admin.id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(review)
    return review
