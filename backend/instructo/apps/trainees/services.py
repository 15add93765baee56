from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from instructo.apps.accounts import models as account_models
from instructo.apps.audit import services as audit_services
from instructo.apps.events import outbox
from instructo.apps.workflow import apply_transition, compare_and_set_status
from instructo.apps.workflow.guards import guard_trainee_complete
from instructo.errors import Conflict, Forbidden, NotFound, ValidationError

from . import models, schemas

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _event_payload(trainee: models.Trainee, **extra: Any) -> Dict[str, Any]:
    payload = {
        "trainee_id": trainee.id,
        "trainee_name": trainee.name,
        "instructor_id": trainee.instructor_id,
        "instructor_name": trainee.instructor_name,
    }
    payload.update(extra)
    return payload


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def get_trainee(db: Session, trainee_id: str) -> models.Trainee:
    trainee = db.get(models.Trainee, trainee_id)
    if trainee is None:
        raise NotFound("Trainee not found")
    return trainee


def get_owned_trainee(
    db: Session,
    trainee_id: str,
    instructor: account_models.User,
) -> models.Trainee:
    trainee = get_trainee(db, trainee_id)
    if trainee.instructor_id != instructor.id:
        raise Forbidden("Trainee belongs to another instructor")
    return trainee


def list_for_instructor(
    db: Session,
    *,
    instructor: account_models.User,
    status: Optional[models.TraineeStatus] = None,
    search: Optional[str] = None,
) -> List[models.Trainee]:
    return list_all(db, status=status, instructor_id=instructor.id, search=search)


def list_all(
    db: Session,
    *,
    status: Optional[models.TraineeStatus] = None,
    instructor_id: Optional[str] = None,
    search: Optional[str] = None,
    include_archived: bool = True,
) -> List[models.Trainee]:
    qs = db.query(models.Trainee)
    if status is not None:
        qs = qs.filter(models.Trainee.status == status)
    if instructor_id:
        qs = qs.filter(models.Trainee.instructor_id == instructor_id)
    if not include_archived:
        qs = qs.filter(models.Trainee.archived_at.is_(None))
    if search:
        like = f"%{search.strip()}%"
        qs = qs.filter(
            or_(
                models.Trainee.name.ilike(like),
                models.Trainee.institution_name.ilike(like),
                models.Trainee.mobile.ilike(like),
            )
        )
    return qs.order_by(models.Trainee.created_at.desc(), models.Trainee.id.desc()).all()


# ---------------------------------------------------------------------------
# Creation / edits
# ---------------------------------------------------------------------------


def create_trainee(
    db: Session,
    *,
    instructor: account_models.User,
    data: schemas.TraineeCreate,
) -> models.Trainee:
    """Register a trainee in `pending_approval` and tell the admins."""
    trainee = models.Trainee(
        **data.model_dump(),
        instructor_id=instructor.id,
        status=models.TraineeStatus.PENDING_APPROVAL,
    )
    trainee.name = trainee.name.strip()
    db.add(trainee)
    db.flush()

    outbox.emit(
        db,
        event_type=outbox.TRAINEE_CREATED,
        aggregate_type="trainee",
        aggregate_id=trainee.id,
        payload={
            "trainee_id": trainee.id,
            "trainee_name": trainee.name,
            "instructor_id": instructor.id,
            "instructor_name": instructor.name,
        },
        actor_user_id=instructor.id,
    )
    audit_services.log_event(
        db,
        actor_user_id=instructor.id,
        actor_role=instructor.role.value,
        entity_type="trainee",
        entity_id=trainee.id,
        action="created",
        after={"status": trainee.status.value, "name": trainee.name},
    )
    db.commit()
    db.refresh(trainee)
    logger.info("Trainee %s registered by instructor %s", trainee.id, instructor.id)
    return trainee


def update_fields(
    db: Session,
    *,
    trainee_id: str,
    instructor: account_models.User,
    data: schemas.TraineeUpdate,
) -> models.Trainee:
    """
    Edit descriptive fields. Allowed for the owning instructor while the
    trainee is not archived; the status guard is part of the UPDATE.
    """
    trainee = get_owned_trainee(db, trainee_id, instructor)
    changes = data.model_dump(exclude_unset=True)
    if "name" in changes and changes["name"] is not None:
        changes["name"] = changes["name"].strip()
    for required in ("name", "mobile", "joining_date"):
        if required in changes and changes[required] is None:
            raise ValidationError(
                f"{required} cannot be cleared",
                detail=[{"field": required, "reason": "required"}],
            )
    if not changes:
        return trainee

    result = db.execute(
        update(models.Trainee)
        .where(
            models.Trainee.id == trainee.id,
            models.Trainee.status.notin_(models.TERMINAL_TRAINEE_STATUSES),
        )
        .values(updated_at=_utcnow(), **changes)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise Conflict("Rejected or completed trainees cannot be edited")

    audit_services.log_event(
        db,
        actor_user_id=instructor.id,
        actor_role=instructor.role.value,
        entity_type="trainee",
        entity_id=trainee.id,
        action="updated",
        metadata={"fields": sorted(changes.keys())},
    )
    db.commit()
    db.refresh(trainee)
    return trainee


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def _transition(
    db: Session,
    trainee: models.Trainee,
    to_status: models.TraineeStatus,
    *,
    actor: account_models.User,
    values: Optional[Dict[str, Any]] = None,
    event_type: Optional[str] = None,
    event_payload: Optional[Dict[str, Any]] = None,
    commit: bool = True,
) -> models.Trainee:
    from_status = trainee.status
    values = dict(values or {})
    values.setdefault("updated_at", _utcnow())
    try:
        apply_transition(
            db,
            actor_user_id=actor.id,
            actor_role=actor.role.value,
            entity_type="trainee",
            entity_id=trainee.id,
            from_state=from_status,
            to_state=to_status,
            before_obj={"id": trainee.id},
            after_obj={"id": trainee.id, **{k: v for k, v in values.items() if k != "updated_at"}},
        )
        compare_and_set_status(
            db,
            models.Trainee,
            entity_id=trainee.id,
            from_state=from_status,
            to_state=to_status,
            values=values,
        )
        if event_type:
            outbox.emit(
                db,
                event_type=event_type,
                aggregate_type="trainee",
                aggregate_id=trainee.id,
                payload=event_payload or _event_payload(trainee),
                actor_user_id=actor.id,
            )
    except Exception:
        if commit:
            db.rollback()
        raise

    if commit:
        db.commit()
        db.refresh(trainee)
    else:
        db.flush()
        db.refresh(trainee)
    logger.info(
        "Trainee %s moved %s -> %s",
        trainee.id,
        getattr(from_status, "value", from_status),
        to_status.value,
        extra={"actor_user_id": actor.id},
    )
    return trainee


def approve(
    db: Session,
    *,
    trainee_id: str,
    admin: account_models.User,
    comments: Optional[str] = None,
) -> models.Trainee:
    trainee = get_trainee(db, trainee_id)
    now = _utcnow()
    return _transition(
        db,
        trainee,
        models.TraineeStatus.APPROVED,
        actor=admin,
        values={
            "reviewed_by_id": admin.id,
            "review_comments": comments,
            "reviewed_at": now,
        },
        event_type=outbox.TRAINEE_APPROVED,
        event_payload=_event_payload(trainee, comments=comments, reviewed_by_id=admin.id),
    )


def reject(
    db: Session,
    *,
    trainee_id: str,
    admin: account_models.User,
    comments: Optional[str] = None,
) -> models.Trainee:
    trainee = get_trainee(db, trainee_id)
    now = _utcnow()
    return _transition(
        db,
        trainee,
        models.TraineeStatus.REJECTED,
        actor=admin,
        values={
            "reviewed_by_id": admin.id,
            "review_comments": comments,
            "reviewed_at": now,
            "archived_at": now,
        },
        event_type=outbox.TRAINEE_REJECTED,
        event_payload=_event_payload(trainee, comments=comments, reviewed_by_id=admin.id),
    )


def decide(
    db: Session,
    *,
    trainee_id: str,
    admin: account_models.User,
    decision: schemas.TraineeDecision,
) -> models.Trainee:
    if decision.status == "rejected":
        return reject(db, trainee_id=trainee_id, admin=admin, comments=decision.comments)
    return approve(db, trainee_id=trainee_id, admin=admin, comments=decision.comments)


def activate(
    db: Session,
    *,
    trainee: models.Trainee,
    actor: account_models.User,
    commit: bool = True,
) -> models.Trainee:
    """
    `approved -> active`. Called explicitly by the instructor or by project
    creation (inside its transaction, `commit=False`).
    """
    return _transition(db, trainee, models.TraineeStatus.ACTIVE, actor=actor, commit=commit)


def activate_owned(
    db: Session,
    *,
    trainee_id: str,
    instructor: account_models.User,
) -> models.Trainee:
    trainee = get_owned_trainee(db, trainee_id, instructor)
    return activate(db, trainee=trainee, actor=instructor)


def complete(
    db: Session,
    *,
    trainee_id: str,
    instructor: account_models.User,
) -> models.Trainee:
    """
    `active -> completed`; refused while any project is still open.

    The open-project guard runs again after the status UPDATE, while the
    row is locked, so a project created concurrently is not missed.
    """
    trainee = get_owned_trainee(db, trainee_id, instructor)
    try:
        _transition(
            db,
            trainee,
            models.TraineeStatus.COMPLETED,
            actor=instructor,
            values={"archived_at": _utcnow()},
            commit=False,
        )
        failures = guard_trainee_complete(
            db,
            before_obj=None,
            after_obj={"id": trainee.id},
            from_state=models.TraineeStatus.ACTIVE.value,
            to_state=models.TraineeStatus.COMPLETED.value,
        )
        if failures:
            raise ValidationError("Missing requirements for transition", detail=failures)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(trainee)
    return trainee


def reassign(
    db: Session,
    *,
    trainee_id: str,
    admin: account_models.User,
    instructor_id: str,
) -> models.Trainee:
    trainee = get_trainee(db, trainee_id)
    if trainee.is_archived:
        raise Conflict("Archived trainees cannot be reassigned")

    instructor = db.get(account_models.User, instructor_id)
    if (
        instructor is None
        or instructor.role != account_models.Role.INSTRUCTOR
        or not instructor.is_active
    ):
        raise NotFound("Instructor not found")
    if instructor.id == trainee.instructor_id:
        return trainee

    previous = trainee.instructor_id
    result = db.execute(
        update(models.Trainee)
        .where(
            models.Trainee.id == trainee.id,
            models.Trainee.instructor_id == previous,
            models.Trainee.archived_at.is_(None),
            models.Trainee.status.notin_(models.TERMINAL_TRAINEE_STATUSES),
        )
        .values(instructor_id=instructor.id, updated_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise Conflict("Trainee was archived or reassigned by another request")
    audit_services.log_event(
        db,
        actor_user_id=admin.id,
        actor_role=admin.role.value,
        entity_type="trainee",
        entity_id=trainee.id,
        action="reassigned",
        before={"instructor_id": previous},
        after={"instructor_id": instructor.id},
    )
    db.commit()
    db.refresh(trainee)
    logger.info("Trainee %s reassigned from %s to %s", trainee.id, previous, instructor.id)
    return trainee
