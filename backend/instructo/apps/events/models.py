from __future__ import annotations

from datetime import datetime, timezone
import enum

from sqlalchemy import Column, DateTime, Enum as SAEnum, Index, Integer, JSON, String, Text

from instructo.database import Base
from instructo.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DomainEventStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"
    DEAD_LETTER = "DEAD_LETTER"


class DomainEvent(Base):
    """
    Outbox row written in the same transaction as the state change it
    describes. The dispatcher turns it into notifications and emails later,
    so a delivery failure can never undo the change itself.
    """

    __tablename__ = "domain_events"
    __table_args__ = (
        Index("ix_domain_events_status_next", "status", "next_attempt_at"),
        Index("ix_domain_events_aggregate", "aggregate_type", "aggregate_id"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    event_type = Column(String(64), nullable=False, index=True)
    aggregate_type = Column(String(64), nullable=False)
    aggregate_id = Column(String(36), nullable=False)
    payload_json = Column(JSON, nullable=True)
    actor_user_id = Column(String(36), nullable=True)

    status = Column(
        SAEnum(DomainEventStatus, name="domain_event_status_enum", native_enum=False),
        nullable=False,
        default=DomainEventStatus.PENDING,
        index=True,
    )
    attempt_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True, default=_utcnow)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<DomainEvent id={self.id} type={self.event_type} status={self.status}>"
