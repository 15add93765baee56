from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from instructo.apps.accounts.models import User
from instructo.apps.events.dispatcher import dispatch_in_background
from instructo.database import get_db
from instructo.schemas import Envelope, envelope
from instructo.security import require_admin

from . import models, schemas, services

router = APIRouter(prefix="/admin/trainees", tags=["admin_trainees"])


@router.get("", response_model=Envelope[List[schemas.TraineeRead]])
def list_trainees(
    status: Optional[models.TraineeStatus] = Query(None),
    instructor_id: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    include_archived: bool = Query(True),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    trainees = services.list_all(
        db,
        status=status,
        instructor_id=instructor_id,
        search=search,
        include_archived=include_archived,
    )
    return envelope(trainees)


@router.get("/{trainee_id}", response_model=Envelope[schemas.TraineeRead])
def get_trainee(
    trainee_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    return envelope(services.get_trainee(db, trainee_id))


@router.put("/{trainee_id}/approve", response_model=Envelope[schemas.TraineeRead])
def approve_trainee(
    trainee_id: str,
    payload: schemas.TraineeDecision,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    """
    Approve or reject a pending trainee. The body carries the decision:
    `{"status": "approved" | "rejected", "comments": "..."}`.
    """
    trainee = services.decide(db, trainee_id=trainee_id, admin=current_user, decision=payload)
    background_tasks.add_task(dispatch_in_background)
    return envelope(trainee, f"Trainee {trainee.status.value} successfully")


@router.put("/{trainee_id}/reject", response_model=Envelope[schemas.TraineeRead])
def reject_trainee(
    trainee_id: str,
    payload: schemas.TraineeReject,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    trainee = services.reject(
        db,
        trainee_id=trainee_id,
        admin=current_user,
        comments=payload.comments,
    )
    background_tasks.add_task(dispatch_in_background)
    return envelope(trainee, "Trainee rejected successfully")


@router.put("/{trainee_id}/reassign", response_model=Envelope[schemas.TraineeRead])
def reassign_trainee(
    trainee_id: str,
    payload: schemas.TraineeReassign,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    trainee = services.reassign(
        db,
        trainee_id=trainee_id,
        admin=current_user,
        instructor_id=payload.instructor_id,
    )
    return envelope(trainee, "Trainee reassigned successfully")
