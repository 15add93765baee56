from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.orm import Session

from instructo.apps.accounts.models import User
from instructo.apps.events.dispatcher import dispatch_in_background
from instructo.database import get_db
from instructo.schemas import Envelope, envelope
from instructo.security import require_instructor

from . import models, schemas, services

router = APIRouter(prefix="/instructor/projects", tags=["instructor_projects"])


@router.get("", response_model=Envelope[List[schemas.ProjectRead]])
def list_projects(
    trainee_id: Optional[str] = Query(None),
    status: Optional[models.ProjectStatus] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_instructor),
):
    projects = services.list_for_instructor(
        db,
        instructor=current_user,
        trainee_id=trainee_id,
        status=status,
    )
    return envelope(projects)


@router.post(
    "",
    response_model=Envelope[schemas.ProjectRead],
    status_code=status.HTTP_201_CREATED,
)
def create_project(
    payload: schemas.ProjectCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_instructor),
):
    project = services.create_project(db, instructor=current_user, data=payload)
    return envelope(project, "Project created successfully")


@router.get("/{project_id}", response_model=Envelope[schemas.ProjectDetail])
def get_project(
    project_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_instructor),
):
    return envelope(services.get_owned_project(db, project_id, current_user))


@router.put("/{project_id}", response_model=Envelope[schemas.ProjectRead])
def update_project(
    project_id: str,
    payload: schemas.ProjectUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_instructor),
):
    project = services.update_project(
        db,
        project_id=project_id,
        instructor=current_user,
        data=payload,
    )
    return envelope(project, "Project updated successfully")


@router.put("/{project_id}/start", response_model=Envelope[schemas.ProjectRead])
def start_project(
    project_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_instructor),
):
    project = services.start_project(db, project_id=project_id, instructor=current_user)
    return envelope(project, "Project started")


@router.put("/{project_id}/complete", response_model=Envelope[schemas.ProjectRead])
def complete_project(
    project_id: str,
    background_tasks: BackgroundTasks,
    performance_rating: Optional[int] = Form(None),
    project_report: Optional[UploadFile] = File(None),
    attendance_document: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_instructor),
):
    """Multipart: `performance_rating`, `project_report`, `attendance_document`."""
    project = services.complete_project(
        db,
        project_id=project_id,
        instructor=current_user,
        performance_rating=performance_rating,
        project_report=project_report,
        attendance_document=attendance_document,
    )
    background_tasks.add_task(dispatch_in_background)
    return envelope(project, "Project completed successfully")


@router.post(
    "/{project_id}/progress",
    response_model=Envelope[schemas.ProgressRead],
    status_code=status.HTTP_201_CREATED,
)
def add_progress(
    project_id: str,
    payload: schemas.ProgressCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_instructor),
):
    entry = services.add_progress(
        db,
        project_id=project_id,
        instructor=current_user,
        data=payload,
    )
    return envelope(entry, "Progress updated successfully")
