from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from instructo.apps.accounts.models import User
from instructo.apps.events.dispatcher import dispatch_in_background
from instructo.database import get_db
from instructo.schemas import Envelope, envelope
from instructo.security import require_admin, require_instructor

from . import models, schemas, services

router = APIRouter(tags=["progress_reviews"])


@router.post(
    "/instructor/share-progress",
    response_model=Envelope[schemas.ProgressReviewRead],
    status_code=status.HTTP_201_CREATED,
)
def share_progress(
    payload: schemas.ShareProgressRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_instructor),
):
    review = services.share_progress(
        db,
        trainee_id=payload.trainee_id,
        instructor=current_user,
        notes=payload.notes,
    )
    background_tasks.add_task(dispatch_in_background)
    return envelope(review, "Progress shared with admin successfully")


@router.get(
    "/admin/progress-reviews",
    response_model=Envelope[List[schemas.ProgressReviewRead]],
)
def list_progress_reviews(
    status: Optional[models.ProgressReviewStatus] = Query(None),
    trainee_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    return envelope(services.list_reviews(db, status=status, trainee_id=trainee_id))


@router.put(
    "/admin/progress-reviews/{review_id}",
    response_model=Envelope[schemas.ProgressReviewRead],
)
def complete_progress_review(
    review_id: str,
    background_tasks: BackgroundTasks,
    payload: Optional[schemas.ReviewComplete] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    """Mark a shared progress record as reviewed."""
    review = services.complete_review(
        db,
        review_id=review_id,
        admin=current_user,
        comments=payload.comments if payload else None,
    )
    background_tasks.add_task(dispatch_in_background)
    return envelope(review, "Progress review marked as completed")
