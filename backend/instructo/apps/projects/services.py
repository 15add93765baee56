from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from instructo.apps.accounts import models as account_models
from instructo.apps.audit import services as audit_services
from instructo.apps.documents import services as document_services
from instructo.apps.documents.models import DocumentType
from instructo.apps.documents.storage import DocumentStorage, get_storage
from instructo.apps.events import outbox
from instructo.apps.trainees import models as trainee_models
from instructo.apps.trainees import services as trainee_services
from instructo.apps.workflow import apply_transition, compare_and_set_status
from instructo.errors import (
    Forbidden,
    InvalidTransition,
    NotFound,
    ProjectLocked,
    TraineeNotActive,
    ValidationError,
)

from . import models, schemas

logger = logging.getLogger(__name__)

# Projects can only be assigned to trainees in these states.
ASSIGNABLE_TRAINEE_STATUSES = (
    trainee_models.TraineeStatus.APPROVED,
    trainee_models.TraineeStatus.ACTIVE,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _has_file(upload: Any) -> bool:
    return upload is not None and bool(getattr(upload, "filename", None))


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def get_owned_project(
    db: Session,
    project_id: str,
    instructor: account_models.User,
) -> models.Project:
    project = db.get(models.Project, project_id)
    if project is None or project.trainee.instructor_id != instructor.id:
        raise NotFound("Project not found")
    return project


def list_for_instructor(
    db: Session,
    *,
    instructor: account_models.User,
    trainee_id: Optional[str] = None,
    status: Optional[models.ProjectStatus] = None,
) -> List[models.Project]:
    qs = (
        db.query(models.Project)
        .join(trainee_models.Trainee, trainee_models.Trainee.id == models.Project.trainee_id)
        .filter(trainee_models.Trainee.instructor_id == instructor.id)
    )
    if trainee_id:
        qs = qs.filter(models.Project.trainee_id == trainee_id)
    if status is not None:
        qs = qs.filter(models.Project.status == status)
    return qs.order_by(models.Project.created_at.desc(), models.Project.id.desc()).all()


# ---------------------------------------------------------------------------
# Create / edit
# ---------------------------------------------------------------------------


def _lock_active_trainee(db: Session, *, trainee_id: str, instructor: account_models.User) -> None:
    """
    Re-check inside the write that the trainee is still active and still
    ours. The touched row stays locked until commit, so a concurrent
    completion waits for this project to exist.
    """
    result = db.execute(
        update(trainee_models.Trainee)
        .where(
            trainee_models.Trainee.id == trainee_id,
            trainee_models.Trainee.instructor_id == instructor.id,
            trainee_models.Trainee.status == trainee_models.TraineeStatus.ACTIVE,
        )
        .values(updated_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise TraineeNotActive()


def create_project(
    db: Session,
    *,
    instructor: account_models.User,
    data: schemas.ProjectCreate,
) -> models.Project:
    """
    Assign a project to one of the instructor's trainees.

    The trainee must be approved or active. Assigning the first project to
    an approved trainee activates it in the same transaction.
    """
    trainee = db.get(trainee_models.Trainee, data.trainee_id)
    if trainee is None:
        raise TraineeNotActive()
    if trainee.instructor_id != instructor.id:
        raise Forbidden("Trainee belongs to another instructor")
    if trainee.status not in ASSIGNABLE_TRAINEE_STATUSES:
        raise TraineeNotActive()

    try:
        if trainee.status == trainee_models.TraineeStatus.APPROVED:
            trainee_services.activate(db, trainee=trainee, actor=instructor, commit=False)
        else:
            _lock_active_trainee(db, trainee_id=trainee.id, instructor=instructor)

        project = models.Project(
            trainee_id=trainee.id,
            project_name=data.project_name.strip(),
            description=data.description,
            due_date=data.due_date,
            start_date=date.today(),
            status=models.ProjectStatus.ASSIGNED,
        )
        db.add(project)
        db.flush()
        audit_services.log_event(
            db,
            actor_user_id=instructor.id,
            actor_role=instructor.role.value,
            entity_type="project",
            entity_id=project.id,
            action="created",
            after={"status": project.status.value, "trainee_id": trainee.id},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(project)
    logger.info("Project %s assigned to trainee %s", project.id, trainee.id)
    return project


def update_project(
    db: Session,
    *,
    project_id: str,
    instructor: account_models.User,
    data: schemas.ProjectUpdate,
) -> models.Project:
    project = get_owned_project(db, project_id, instructor)
    if project.is_locked:
        raise ProjectLocked()
    changes = data.model_dump(exclude_unset=True)
    if changes.get("project_name") is not None:
        changes["project_name"] = changes["project_name"].strip()
    elif "project_name" in changes:
        raise ValidationError(
            "project_name cannot be cleared",
            detail=[{"field": "project_name", "reason": "required"}],
        )
    if not changes:
        return project

    result = db.execute(
        update(models.Project)
        .where(
            models.Project.id == project.id,
            models.Project.status != models.ProjectStatus.COMPLETED,
        )
        .values(updated_at=_utcnow(), **changes)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ProjectLocked()
    db.commit()
    db.refresh(project)
    return project


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def start_project(
    db: Session,
    *,
    project_id: str,
    instructor: account_models.User,
) -> models.Project:
    """`assigned -> in_progress`."""
    project = get_owned_project(db, project_id, instructor)
    if project.is_locked:
        raise ProjectLocked()
    from_status = project.status
    try:
        apply_transition(
            db,
            actor_user_id=instructor.id,
            actor_role=instructor.role.value,
            entity_type="project",
            entity_id=project.id,
            from_state=from_status,
            to_state=models.ProjectStatus.IN_PROGRESS,
            before_obj={"id": project.id},
            after_obj={"id": project.id},
        )
        compare_and_set_status(
            db,
            models.Project,
            entity_id=project.id,
            from_state=from_status,
            to_state=models.ProjectStatus.IN_PROGRESS,
            values={"updated_at": _utcnow()},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(project)
    logger.info("Project %s started", project.id)
    return project


def complete_project(
    db: Session,
    *,
    project_id: str,
    instructor: account_models.User,
    performance_rating: Optional[int],
    project_report: Any,
    attendance_document: Any,
    storage: Optional[DocumentStorage] = None,
    today: Optional[date] = None,
) -> models.Project:
    """
    `in_progress -> completed` with rating and both documents.

    All preconditions are checked before anything is written. The files are
    stored first; rating, paths, end date and status then change in one
    UPDATE together with the two Document rows and the outbox event. If any
    step fails the transaction is rolled back and the stored files removed,
    so the project is observed either unchanged or fully completed.
    """
    project = get_owned_project(db, project_id, instructor)
    if project.is_locked:
        raise ProjectLocked()

    problems = []
    if (
        performance_rating is None
        or isinstance(performance_rating, bool)
        or not isinstance(performance_rating, int)
        or not 1 <= performance_rating <= 10
    ):
        problems.append({"field": "performance_rating", "reason": "rating must be between 1 and 10"})
    if not _has_file(project_report):
        problems.append({"field": "project_report", "reason": "project report required"})
    if not _has_file(attendance_document):
        problems.append({"field": "attendance_document", "reason": "attendance document required"})
    if problems:
        raise ValidationError("Performance rating and both documents are required", detail=problems)

    if project.status != models.ProjectStatus.IN_PROGRESS:
        raise InvalidTransition(
            f"Cannot complete a project that is {project.status.value}",
            detail=[{"field": "status", "reason": "project must be in progress"}],
        )

    storage = storage or get_storage()
    folder = f"trainees/{project.trainee_id}/projects/{project.id}"
    stored_paths: List[str] = []
    try:
        report = storage.save(project_report, folder=folder, field="project_report")
        stored_paths.append(report.path)
        attendance = storage.save(attendance_document, folder=folder, field="attendance_document")
        stored_paths.append(attendance.path)

        end_date = today or date.today()
        values = {
            "performance_rating": performance_rating,
            "project_report_path": report.path,
            "attendance_document_path": attendance.path,
            "end_date": end_date,
            "updated_at": _utcnow(),
        }
        apply_transition(
            db,
            actor_user_id=instructor.id,
            actor_role=instructor.role.value,
            entity_type="project",
            entity_id=project.id,
            from_state=models.ProjectStatus.IN_PROGRESS,
            to_state=models.ProjectStatus.COMPLETED,
            before_obj={"id": project.id},
            after_obj={"id": project.id, **{k: v for k, v in values.items() if k != "updated_at"}},
        )
        compare_and_set_status(
            db,
            models.Project,
            entity_id=project.id,
            from_state=models.ProjectStatus.IN_PROGRESS,
            to_state=models.ProjectStatus.COMPLETED,
            values=values,
        )
        document_services.add_document(
            db,
            trainee_id=project.trainee_id,
            project_id=project.id,
            stored=report,
            document_type=DocumentType.PROJECT_REPORT,
            uploaded_by=instructor,
            document_name=f"{project.project_name} - Project Report",
        )
        document_services.add_document(
            db,
            trainee_id=project.trainee_id,
            project_id=project.id,
            stored=attendance,
            document_type=DocumentType.ATTENDANCE_RECORD,
            uploaded_by=instructor,
            document_name=f"{project.project_name} - Attendance Record",
        )
        outbox.emit(
            db,
            event_type=outbox.PROJECT_COMPLETED,
            aggregate_type="project",
            aggregate_id=project.id,
            payload={
                "project_id": project.id,
                "project_name": project.project_name,
                "trainee_id": project.trainee_id,
                "trainee_name": project.trainee_name,
                "instructor_id": instructor.id,
                "instructor_name": instructor.name,
                "performance_rating": performance_rating,
                "end_date": end_date.isoformat(),
                "project_report_path": report.path,
                "attendance_document_path": attendance.path,
            },
            actor_user_id=instructor.id,
        )
        db.commit()
    except Exception:
        db.rollback()
        for path in stored_paths:
            storage.delete(path)
        raise

    db.refresh(project)
    logger.info(
        "Project %s completed with rating %s",
        project.id,
        performance_rating,
        extra={"actor_user_id": instructor.id},
    )
    return project


def add_progress(
    db: Session,
    *,
    project_id: str,
    instructor: account_models.User,
    data: schemas.ProgressCreate,
) -> models.ProjectProgress:
    project = get_owned_project(db, project_id, instructor)
    if project.is_locked:
        raise ProjectLocked()
    entry = models.ProjectProgress(
        project_id=project.id,
        recorded_by_id=instructor.id,
        **data.model_dump(),
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry
