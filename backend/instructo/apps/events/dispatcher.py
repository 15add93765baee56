from __future__ import annotations

import logging
import os
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from instructo.database import WriteSessionLocal

from . import handlers, models

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = int(os.getenv("EVENT_DISPATCH_LIMIT", "50"))
DEFAULT_INTERVAL_SEC = int(os.getenv("EVENT_DISPATCH_INTERVAL_SEC", "5"))
MAX_ATTEMPTS = int(os.getenv("EVENT_DISPATCH_MAX_ATTEMPTS", "5"))
BASE_BACKOFF_SEC = int(os.getenv("EVENT_DISPATCH_BACKOFF_SEC", "5"))
LEASE_SEC = int(os.getenv("EVENT_DISPATCH_LEASE_SEC", "300"))

# PROCESSING rows are picked up again once their lease has run out.
_DUE_STATUSES = (
    models.DomainEventStatus.PENDING,
    models.DomainEventStatus.FAILED,
    models.DomainEventStatus.PROCESSING,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _compute_next_attempt(now: datetime, attempt: int) -> datetime:
    backoff = BASE_BACKOFF_SEC * (2 ** max(attempt - 1, 0))
    return now + timedelta(seconds=backoff)


def _mark_failed(
    event: models.DomainEvent,
    *,
    now: datetime,
    attempt: int,
    error: str,
) -> None:
    event.attempt_count = attempt
    event.last_error = error[:500]
    event.next_attempt_at = _compute_next_attempt(now, attempt)
    event.status = models.DomainEventStatus.FAILED
    if attempt >= MAX_ATTEMPTS:
        event.status = models.DomainEventStatus.DEAD_LETTER
        event.next_attempt_at = None


def _claim(db: Session, event_id: str, *, now: datetime) -> bool:
    """
    Take the lease on one due event.

    The status and due-time check and the lease are a single UPDATE, so of
    two overlapping dispatchers only one matches the row. A claimed event
    is due again only after LEASE_SEC, which covers a dispatcher that died
    mid-handler.
    """
    result = db.execute(
        update(models.DomainEvent)
        .where(
            models.DomainEvent.id == event_id,
            models.DomainEvent.status.in_(_DUE_STATUSES),
            models.DomainEvent.next_attempt_at <= now,
        )
        .values(
            status=models.DomainEventStatus.PROCESSING,
            next_attempt_at=now + timedelta(seconds=LEASE_SEC),
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def dispatch_pending_events(
    db: Session,
    *,
    now: Optional[datetime] = None,
    limit: int = DEFAULT_LIMIT,
) -> int:
    """
    Run handlers for due outbox events, oldest first.

    Each event is claimed and committed on its own: a failing handler is
    rolled back, recorded on the event and retried later with exponential
    backoff, and never affects the other events in the batch. Events
    claimed by another dispatcher are skipped. Returns the number of events
    attempted.
    """
    now = now or _utcnow()
    query = (
        db.query(models.DomainEvent.id)
        .filter(
            models.DomainEvent.status.in_(_DUE_STATUSES),
            models.DomainEvent.next_attempt_at <= now,
        )
        .order_by(models.DomainEvent.created_at.asc(), models.DomainEvent.id.asc())
        .with_for_update(skip_locked=True)
    )
    event_ids = [row[0] for row in query.limit(limit).all()]
    if not event_ids:
        return 0

    attempted = 0
    for event_id in event_ids:
        if not _claim(db, event_id, now=now):
            continue
        event = db.get(models.DomainEvent, event_id)
        if event is None:
            continue
        db.refresh(event)
        attempted += 1
        attempt = event.attempt_count + 1

        handler = handlers.HANDLERS.get(event.event_type)
        if handler is None:
            event.attempt_count = attempt
            event.status = models.DomainEventStatus.DEAD_LETTER
            event.last_error = f"No handler registered for {event.event_type}"
            event.next_attempt_at = None
            db.commit()
            logger.warning("Dead-lettered event %s: no handler for %s", event.id, event.event_type)
            continue

        try:
            handler(db, event)
            event.status = models.DomainEventStatus.PROCESSED
            event.attempt_count = attempt
            event.last_error = None
            event.next_attempt_at = None
            event.processed_at = now
            db.commit()
        except Exception as exc:  # noqa: BLE001
            db.rollback()
            logger.warning(
                "Event handler failed for %s (%s), attempt %s",
                event_id,
                event.event_type,
                attempt,
                exc_info=True,
            )
            _mark_failed(event, now=now, attempt=attempt, error=str(exc) or type(exc).__name__)
            db.commit()

    return attempted


def dispatch_in_background() -> None:
    """Entry point for FastAPI BackgroundTasks; uses its own session."""
    db = WriteSessionLocal()
    try:
        dispatch_pending_events(db)
    except Exception:
        db.rollback()
        logger.exception("Background event dispatch failed")
    finally:
        db.close()


def run_dispatch_loop() -> None:
    while True:
        db = WriteSessionLocal()
        try:
            dispatched = dispatch_pending_events(db)
        except Exception:
            db.rollback()
            logger.exception("Event dispatch loop iteration failed")
            dispatched = 0
        finally:
            db.close()
        time.sleep(DEFAULT_INTERVAL_SEC if dispatched == 0 else 0)


if __name__ == "__main__":
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
    run_dispatch_loop()
