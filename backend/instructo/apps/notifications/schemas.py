from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel

from instructo.apps.accounts.models import Role

from .models import EmailStatus, NotificationType


class NotificationRead(BaseModel):
    id: str
    recipient_id: str
    recipient_type: Role
    type: NotificationType
    title: str
    message: str
    payload: Optional[dict] = None
    related_entity_type: Optional[str] = None
    related_entity_id: Optional[str] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationList(BaseModel):
    items: List[NotificationRead]
    total: int
    unread_count: int


class NotificationStats(BaseModel):
    total: int
    unread: int
    by_type: Dict[str, int]


class MarkAllReadResult(BaseModel):
    updated: int


class EmailLogRead(BaseModel):
    id: str
    created_at: datetime
    sent_at: Optional[datetime] = None
    recipient: str
    subject: str
    template_key: str
    status: EmailStatus
    error: Optional[str] = None
    context_json: Optional[dict] = None
    correlation_id: Optional[str] = None

    class Config:
        from_attributes = True
