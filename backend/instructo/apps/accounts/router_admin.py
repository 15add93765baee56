# backend/instructo/apps/accounts/router_admin.py

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from instructo.apps.events.dispatcher import dispatch_in_background
from instructo.database import get_db
from instructo.schemas import Envelope, envelope
from instructo.security import require_admin
from . import models, schemas, services

router = APIRouter(prefix="/admin", tags=["admin_accounts"])


# ---------------------------------------------------------------------------
# ADMINS
# ---------------------------------------------------------------------------


@router.get(
    "/admins",
    response_model=Envelope[List[schemas.UserRead]],
    summary="List admin accounts",
)
def list_admins(
    include_inactive: bool = Query(False),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    admins = services.list_users(
        db,
        role=models.Role.ADMIN,
        include_inactive=include_inactive,
        search=search,
    )
    return envelope(admins)


@router.get(
    "/admins/{admin_id}",
    response_model=Envelope[schemas.UserRead],
)
def get_admin(
    admin_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    return envelope(services.get_user(db, role=models.Role.ADMIN, user_id=admin_id))


@router.post(
    "/admins",
    response_model=Envelope[schemas.UserRead],
    status_code=status.HTTP_201_CREATED,
    summary="Create an admin account",
)
def create_admin(
    payload: schemas.AdminCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    admin = services.create_user(
        db,
        role=models.Role.ADMIN,
        data=payload,
        created_by=current_user,
    )
    background_tasks.add_task(dispatch_in_background)
    return envelope(admin, "Admin created successfully")


@router.put(
    "/admins/{admin_id}",
    response_model=Envelope[schemas.UserRead],
)
def update_admin(
    admin_id: str,
    payload: schemas.AdminUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    admin = services.update_user(
        db,
        role=models.Role.ADMIN,
        user_id=admin_id,
        data=payload,
        actor=current_user,
    )
    return envelope(admin, "Admin updated successfully")


@router.delete(
    "/admins/{admin_id}",
    response_model=Envelope[schemas.UserRead],
    summary="Deactivate an admin account",
)
def delete_admin(
    admin_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    admin = services.deactivate_user(
        db,
        role=models.Role.ADMIN,
        user_id=admin_id,
        actor=current_user,
    )
    return envelope(admin, "Admin deactivated successfully")


# ---------------------------------------------------------------------------
# INSTRUCTORS
# ---------------------------------------------------------------------------


@router.get(
    "/instructors",
    response_model=Envelope[List[schemas.UserRead]],
    summary="List instructor accounts",
)
def list_instructors(
    include_inactive: bool = Query(False),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    instructors = services.list_users(
        db,
        role=models.Role.INSTRUCTOR,
        include_inactive=include_inactive,
        search=search,
    )
    return envelope(instructors)


@router.get(
    "/instructors/{instructor_id}",
    response_model=Envelope[schemas.UserRead],
)
def get_instructor(
    instructor_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    return envelope(services.get_user(db, role=models.Role.INSTRUCTOR, user_id=instructor_id))


@router.post(
    "/instructors",
    response_model=Envelope[schemas.UserRead],
    status_code=status.HTTP_201_CREATED,
    summary="Create an instructor account",
)
def create_instructor(
    payload: schemas.InstructorCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    instructor = services.create_user(
        db,
        role=models.Role.INSTRUCTOR,
        data=payload,
        created_by=current_user,
    )
    background_tasks.add_task(dispatch_in_background)
    return envelope(instructor, "Instructor created successfully")


@router.put(
    "/instructors/{instructor_id}",
    response_model=Envelope[schemas.UserRead],
)
def update_instructor(
    instructor_id: str,
    payload: schemas.InstructorUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    instructor = services.update_user(
        db,
        role=models.Role.INSTRUCTOR,
        user_id=instructor_id,
        data=payload,
        actor=current_user,
    )
    return envelope(instructor, "Instructor updated successfully")


@router.delete(
    "/instructors/{instructor_id}",
    response_model=Envelope[schemas.UserRead],
    summary="Deactivate an instructor account",
)
def delete_instructor(
    instructor_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_admin),
):
    instructor = services.deactivate_user(
        db,
        role=models.Role.INSTRUCTOR,
        user_id=instructor_id,
        actor=current_user,
    )
    return envelope(instructor, "Instructor deactivated successfully")
