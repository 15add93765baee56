from __future__ import annotations

from datetime import datetime, timezone
import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from instructo.apps.accounts.models import Role
from instructo.database import Base
from instructo.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationType(str, enum.Enum):
    TRAINEE_CREATED = "trainee_created"
    TRAINEE_APPROVED = "trainee_approved"
    TRAINEE_REJECTED = "trainee_rejected"
    PROGRESS_SHARED = "progress_shared"
    PROGRESS_REVIEWED = "progress_reviewed"
    PROJECT_COMPLETED = "project_completed"
    ACCOUNT_CREATED = "account_created"
    GENERAL = "general"


class Notification(Base):
    """
    In-app notification for one staff account.

    Rows are only ever written by the event handlers in
    `instructo.apps.events.handlers`; end users can read, mark and delete
    their own notifications but never create one.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_recipient_read", "recipient_id", "is_read"),
        Index("ix_notifications_recipient_created", "recipient_id", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    recipient_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    recipient_type = Column(
        SAEnum(Role, name="notification_recipient_type_enum", native_enum=False),
        nullable=False,
    )
    type = Column(
        SAEnum(NotificationType, name="notification_type_enum", native_enum=False),
        nullable=False,
        default=NotificationType.GENERAL,
        index=True,
    )
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)

    related_entity_type = Column(String(64), nullable=True)
    related_entity_id = Column(String(36), nullable=True, index=True)

    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    recipient = relationship("User")

    def __repr__(self) -> str:
        return f"<Notification id={self.id} recipient={self.recipient_id} type={self.type}>"


class EmailStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    SENT = "SENT"
    FAILED = "FAILED"
    SKIPPED_NO_PROVIDER = "SKIPPED_NO_PROVIDER"


class EmailLog(Base):
    __tablename__ = "email_logs"
    __table_args__ = (
        Index("ix_email_logs_status_created", "status", "created_at"),
        Index("ix_email_logs_recipient", "recipient"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    recipient = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=False)
    template_key = Column(String(128), nullable=False, index=True)
    status = Column(
        SAEnum(EmailStatus, name="email_status_enum", native_enum=False),
        nullable=False,
        index=True,
    )
    error = Column(Text, nullable=True)
    context_json = Column(JSON, nullable=True)
    correlation_id = Column(String(64), nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<EmailLog id={self.id} recipient={self.recipient} status={self.status}>"
