from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from instructo.apps.accounts.models import User
from instructo.database import get_db, get_read_db
from instructo.schemas import Envelope, envelope
from instructo.security import get_current_user, require_admin

from . import models, schemas, service


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=Envelope[schemas.NotificationList])
def list_notifications(
    is_read: Optional[bool] = Query(None),
    type: Optional[models.NotificationType] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    items, total = service.list_for_user(
        db,
        user_id=current_user.id,
        is_read=is_read,
        type=type,
        limit=limit,
        offset=offset,
    )
    return envelope(
        {
            "items": items,
            "total": total,
            "unread_count": service.unread_count(db, user_id=current_user.id),
        }
    )


@router.get("/stats", response_model=Envelope[schemas.NotificationStats])
def notification_stats(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return envelope(service.stats(db, user_id=current_user.id))


@router.put("/read-all", response_model=Envelope[schemas.MarkAllReadResult])
def mark_all_notifications_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    updated = service.mark_all_read(db, user_id=current_user.id)
    return envelope({"updated": updated}, "All notifications marked as read")


@router.put("/{notification_id}/read", response_model=Envelope[schemas.NotificationRead])
def mark_notification_read(
    notification_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    notification = service.mark_read(
        db,
        notification_id=notification_id,
        requester_id=current_user.id,
    )
    return envelope(notification, "Notification marked as read")


@router.delete("/{notification_id}", response_model=Envelope)
def delete_notification(
    notification_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    service.delete_notification(
        db,
        notification_id=notification_id,
        requester_id=current_user.id,
    )
    return envelope(None, "Notification deleted")


@router.get("/email-logs", response_model=Envelope[List[schemas.EmailLogRead]])
def list_email_logs(
    status: Optional[models.EmailStatus] = None,
    template_key: Optional[str] = None,
    recipient: Optional[str] = None,
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    db: Session = Depends(get_read_db),
    current_user: User = Depends(require_admin),
):
    qs = db.query(models.EmailLog)
    if status:
        qs = qs.filter(models.EmailLog.status == status)
    if template_key:
        qs = qs.filter(models.EmailLog.template_key == template_key)
    if recipient:
        qs = qs.filter(models.EmailLog.recipient.ilike(f"%{recipient}%"))
    if start:
        qs = qs.filter(models.EmailLog.created_at >= start)
    if end:
        qs = qs.filter(models.EmailLog.created_at <= end)
    return envelope(qs.order_by(models.EmailLog.created_at.desc()).all())
