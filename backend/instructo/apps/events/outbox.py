from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)

TRAINEE_CREATED = "trainee.created"
TRAINEE_APPROVED = "trainee.approved"
TRAINEE_REJECTED = "trainee.rejected"
PROGRESS_SHARED = "progress.shared"
PROGRESS_REVIEW_COMPLETED = "progress_review.completed"
PROJECT_COMPLETED = "project.completed"
ACCOUNT_CREATED = "account.created"


def emit(
    db: Session,
    *,
    event_type: str,
    aggregate_type: str,
    aggregate_id: str,
    payload: Optional[Dict[str, Any]] = None,
    actor_user_id: Optional[str] = None,
) -> models.DomainEvent:
    """Append an event to the outbox inside the caller's transaction."""
    event = models.DomainEvent(
        event_type=event_type,
        aggregate_type=aggregate_type,
        aggregate_id=aggregate_id,
        payload_json=payload or {},
        actor_user_id=actor_user_id,
        status=models.DomainEventStatus.PENDING,
        attempt_count=0,
    )
    db.add(event)
    db.flush()
    logger.debug("Queued domain event %s for %s %s", event_type, aggregate_type, aggregate_id)
    return event
