from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from instructo.apps.accounts import models as account_models
from instructo.database import WriteSessionLocal
from instructo.errors import Forbidden, NotFound, UnknownRecipient

from . import models, providers

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# IN-APP NOTIFICATIONS
# ---------------------------------------------------------------------------


def notify(
    db: Session,
    *,
    recipient_id: str,
    type: models.NotificationType,
    title: str,
    message: str,
    payload: Optional[Dict[str, Any]] = None,
    related_entity_type: Optional[str] = None,
    related_entity_id: Optional[str] = None,
) -> models.Notification:
    """
    Record one notification for `recipient_id`.

    Raises UnknownRecipient if the account does not exist. The row joins the
    caller's transaction; committing is up to the caller.
    """
    recipient = (
        db.query(account_models.User)
        .filter(account_models.User.id == recipient_id)
        .first()
    )
    if recipient is None:
        raise UnknownRecipient(detail=[{"field": "recipient_id", "reason": str(recipient_id)}])

    notification = models.Notification(
        recipient_id=recipient.id,
        recipient_type=recipient.role,
        type=type,
        title=title,
        message=message,
        payload=payload or None,
        related_entity_type=related_entity_type,
        related_entity_id=related_entity_id,
        is_read=False,
    )
    db.add(notification)
    db.flush()
    return notification


def notify_admins(
    db: Session,
    *,
    type: models.NotificationType,
    title: str,
    message: str,
    payload: Optional[Dict[str, Any]] = None,
    related_entity_type: Optional[str] = None,
    related_entity_id: Optional[str] = None,
) -> List[models.Notification]:
    """Fan one notification out to every active admin."""
    admins = (
        db.query(account_models.User)
        .filter(
            account_models.User.role == account_models.Role.ADMIN,
            account_models.User.is_active.is_(True),
        )
        .order_by(account_models.User.created_at.asc())
        .all()
    )
    return [
        notify(
            db,
            recipient_id=admin.id,
            type=type,
            title=title,
            message=message,
            payload=payload,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
        )
        for admin in admins
    ]


def list_for_user(
    db: Session,
    *,
    user_id: str,
    is_read: Optional[bool] = None,
    type: Optional[models.NotificationType] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[models.Notification], int]:
    qs = db.query(models.Notification).filter(models.Notification.recipient_id == user_id)
    if is_read is not None:
        qs = qs.filter(models.Notification.is_read.is_(is_read))
    if type is not None:
        qs = qs.filter(models.Notification.type == type)
    total = qs.count()
    items = (
        qs.order_by(models.Notification.created_at.desc(), models.Notification.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total


def unread_count(db: Session, *, user_id: str) -> int:
    return (
        db.query(models.Notification)
        .filter(
            models.Notification.recipient_id == user_id,
            models.Notification.is_read.is_(False),
        )
        .count()
    )


def _get_owned(db: Session, notification_id: str, requester_id: str) -> models.Notification:
    notification = db.get(models.Notification, notification_id)
    if notification is None:
        raise NotFound("Notification not found")
    if notification.recipient_id != requester_id:
        raise Forbidden("Notification belongs to another user")
    return notification


def mark_read(db: Session, *, notification_id: str, requester_id: str) -> models.Notification:
    notification = _get_owned(db, notification_id, requester_id)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = _utcnow()
        db.add(notification)
        db.commit()
        db.refresh(notification)
    return notification


def mark_all_read(db: Session, *, user_id: str) -> int:
    result = db.execute(
        update(models.Notification)
        .where(
            models.Notification.recipient_id == user_id,
            models.Notification.is_read.is_(False),
        )
        .values(is_read=True, read_at=_utcnow())
        .execution_options(synchronize_session="fetch")
    )
    db.commit()
    return result.rowcount or 0


def delete_notification(db: Session, *, notification_id: str, requester_id: str) -> None:
    notification = _get_owned(db, notification_id, requester_id)
    db.delete(notification)
    db.commit()


def stats(db: Session, *, user_id: str) -> Dict[str, Any]:
    rows = (
        db.query(
            models.Notification.type,
            func.count(models.Notification.id),
        )
        .filter(models.Notification.recipient_id == user_id)
        .group_by(models.Notification.type)
        .all()
    )
    by_type = {
        (t.value if hasattr(t, "value") else str(t)): int(n)
        for t, n in rows
    }
    return {
        "total": sum(by_type.values()),
        "unread": unread_count(db, user_id=user_id),
        "by_type": by_type,
    }


# ---------------------------------------------------------------------------
# EMAIL
# ---------------------------------------------------------------------------


def send_email(
    template_key: str,
    recipient: str,
    subject: str,
    context: dict,
    correlation_id: Optional[str],
    critical: bool = False,
    *,
    db: Optional[Session] = None,
) -> models.EmailLog:
    """
    Send one email through the configured provider and record an EmailLog.

    Non-critical sends never raise on provider failure; the log row carries
    the error instead. Critical sends (OTP delivery) re-raise so the caller
    can report the failure.
    """
    owns_session = db is None
    db = db or WriteSessionLocal()
    log = models.EmailLog(
        recipient=recipient,
        subject=subject,
        template_key=template_key,
        status=models.EmailStatus.QUEUED,
        # OTP values stay out of the stored context.
        context_json={k: v for k, v in (context or {}).items() if k != "otp"},
        correlation_id=correlation_id,
    )
    try:
        db.add(log)
        db.flush()

        provider, configured = providers.get_email_provider()
        if not configured:
            log.status = models.EmailStatus.SKIPPED_NO_PROVIDER
            log.error = "No provider configured"
            db.add(log)
            if owns_session:
                db.commit()
            return log

        try:
            provider.send(
                template_key=template_key,
                recipient=recipient,
                subject=subject,
                context=context or {},
                correlation_id=correlation_id,
            )
            log.status = models.EmailStatus.SENT
            log.sent_at = _utcnow()
        except Exception as exc:
            log.status = models.EmailStatus.FAILED
            log.error = str(exc)
            logger.warning(
                "Email delivery failed",
                extra={"template_key": template_key, "correlation_id": correlation_id},
            )
            if critical:
                db.add(log)
                if owns_session:
                    db.commit()
                raise
        db.add(log)
        if owns_session:
            db.commit()
        return log
    finally:
        if owns_session:
            db.close()
