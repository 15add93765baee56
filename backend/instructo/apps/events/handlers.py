"""
Outbox event handlers.

Each handler receives the dispatcher's session and the event row. Handlers
only add rows (notifications, email logs); the dispatcher owns the commit.
"""

from __future__ import annotations

import logging
import os
from typing import Callable, Dict, List

from sqlalchemy.orm import Session

from instructo.apps.notifications import service as notification_service
from instructo.apps.notifications.models import NotificationType

from . import models, outbox

logger = logging.getLogger(__name__)

Handler = Callable[[Session, models.DomainEvent], None]


def _department_recipients() -> List[str]:
    recipients = []
    for var in ("TRAINING_DEPT_EMAIL", "HRD_DEPT_EMAIL"):
        value = (os.getenv(var) or "").strip()
        if value and value not in recipients:
            recipients.append(value)
    return recipients


def handle_trainee_created(db: Session, event: models.DomainEvent) -> None:
    p = event.payload_json or {}
    notification_service.notify_admins(
        db,
        type=NotificationType.TRAINEE_CREATED,
        title="New trainee awaiting approval",
        message=(
            f"{p.get('instructor_name') or 'An instructor'} registered trainee "
            f"{p.get('trainee_name')}. Review and approve or reject the registration."
        ),
        payload=p,
        related_entity_type="trainee",
        related_entity_id=event.aggregate_id,
    )


def _handle_trainee_decision(db: Session, event: models.DomainEvent, approved: bool) -> None:
    p = event.payload_json or {}
    verdict = "approved" if approved else "rejected"
    message = f"Trainee {p.get('trainee_name')} has been {verdict}."
    if p.get("comments"):
        message += f" Comments: {p['comments']}"
    notification_service.notify(
        db,
        recipient_id=p["instructor_id"],
        type=NotificationType.TRAINEE_APPROVED if approved else NotificationType.TRAINEE_REJECTED,
        title=f"Trainee {verdict}",
        message=message,
        payload=p,
        related_entity_type="trainee",
        related_entity_id=event.aggregate_id,
    )


def handle_trainee_approved(db: Session, event: models.DomainEvent) -> None:
    _handle_trainee_decision(db, event, approved=True)


def handle_trainee_rejected(db: Session, event: models.DomainEvent) -> None:
    _handle_trainee_decision(db, event, approved=False)


def handle_progress_shared(db: Session, event: models.DomainEvent) -> None:
    p = event.payload_json or {}
    notification_service.notify_admins(
        db,
        type=NotificationType.PROGRESS_SHARED,
        title="Trainee progress shared for review",
        message=(
            f"{p.get('instructor_name') or 'An instructor'} shared the progress of "
            f"{p.get('trainee_name')} for review."
        ),
        payload=p,
        related_entity_type="progress_review",
        related_entity_id=event.aggregate_id,
    )


def handle_progress_review_completed(db: Session, event: models.DomainEvent) -> None:
    p = event.payload_json or {}
    message = f"The progress review for {p.get('trainee_name')} has been completed."
    if p.get("comments"):
        message += f" Comments: {p['comments']}"
    notification_service.notify(
        db,
        recipient_id=p["instructor_id"],
        type=NotificationType.PROGRESS_REVIEWED,
        title="Progress review completed",
        message=message,
        payload=p,
        related_entity_type="progress_review",
        related_entity_id=event.aggregate_id,
    )


def handle_project_completed(db: Session, event: models.DomainEvent) -> None:
    p = event.payload_json or {}
    notification_service.notify_admins(
        db,
        type=NotificationType.PROJECT_COMPLETED,
        title="Project completed",
        message=(
            f"Project '{p.get('project_name')}' for {p.get('trainee_name')} was completed "
            f"with a rating of {p.get('performance_rating')}/10."
        ),
        payload=p,
        related_entity_type="project",
        related_entity_id=event.aggregate_id,
    )
    for recipient in _department_recipients():
        # Department mail is best-effort; failures stay on the EmailLog row.
        notification_service.send_email(
            "project_completed",
            recipient,
            f"Project completed: {p.get('project_name')} ({p.get('trainee_name')})",
            p,
            correlation_id=f"project:{event.aggregate_id}:completed",
            db=db,
        )


def handle_account_created(db: Session, event: models.DomainEvent) -> None:
    p = event.payload_json or {}
    notification_service.notify(
        db,
        recipient_id=event.aggregate_id,
        type=NotificationType.ACCOUNT_CREATED,
        title="Welcome to Instructo",
        message=f"Your {p.get('role')} account has been created.",
        payload=p,
        related_entity_type="user",
        related_entity_id=event.aggregate_id,
    )
    if p.get("email"):
        notification_service.send_email(
            "account_created",
            p["email"],
            "Your Instructo account",
            p,
            correlation_id=f"user:{event.aggregate_id}:created",
            db=db,
        )


HANDLERS: Dict[str, Handler] = {
    outbox.TRAINEE_CREATED: handle_trainee_created,
    outbox.TRAINEE_APPROVED: handle_trainee_approved,
    outbox.TRAINEE_REJECTED: handle_trainee_rejected,
    outbox.PROGRESS_SHARED: handle_progress_shared,
    outbox.PROGRESS_REVIEW_COMPLETED: handle_progress_review_completed,
    outbox.PROJECT_COMPLETED: handle_project_completed,
    outbox.ACCOUNT_CREATED: handle_account_created,
}
