from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from instructo.apps.accounts.models import User
from instructo.apps.events.dispatcher import dispatch_in_background
from instructo.database import get_db
from instructo.schemas import Envelope, envelope
from instructo.security import require_instructor

from . import models, schemas, services

router = APIRouter(prefix="/instructor/trainees", tags=["instructor_trainees"])


@router.get("", response_model=Envelope[List[schemas.TraineeRead]])
def list_my_trainees(
    status: Optional[models.TraineeStatus] = Query(None),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_instructor),
):
    return envelope(
        services.list_for_instructor(db, instructor=current_user, status=status, search=search)
    )


@router.post(
    "",
    response_model=Envelope[schemas.TraineeRead],
    status_code=status.HTTP_201_CREATED,
)
def create_trainee(
    payload: schemas.TraineeCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_instructor),
):
    trainee = services.create_trainee(db, instructor=current_user, data=payload)
    background_tasks.add_task(dispatch_in_background)
    return envelope(trainee, "Trainee created successfully and sent for approval")


@router.get("/{trainee_id}", response_model=Envelope[schemas.TraineeRead])
def get_my_trainee(
    trainee_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_instructor),
):
    return envelope(services.get_owned_trainee(db, trainee_id, current_user))


@router.put("/{trainee_id}", response_model=Envelope[schemas.TraineeRead])
def update_my_trainee(
    trainee_id: str,
    payload: schemas.TraineeUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_instructor),
):
    trainee = services.update_fields(
        db,
        trainee_id=trainee_id,
        instructor=current_user,
        data=payload,
    )
    return envelope(trainee, "Trainee updated successfully")


@router.put("/{trainee_id}/activate", response_model=Envelope[schemas.TraineeRead])
def activate_trainee(
    trainee_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_instructor),
):
    trainee = services.activate_owned(db, trainee_id=trainee_id, instructor=current_user)
    return envelope(trainee, "Trainee activated")


@router.put("/{trainee_id}/complete", response_model=Envelope[schemas.TraineeRead])
def complete_trainee(
    trainee_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_instructor),
):
    trainee = services.complete(db, trainee_id=trainee_id, instructor=current_user)
    return envelope(trainee, "Trainee marked as completed")
