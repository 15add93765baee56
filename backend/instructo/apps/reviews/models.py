from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from instructo.database import Base
from instructo.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProgressReviewStatus(str, enum.Enum):
    IN_REVIEW = "in_review"
    COMPLETED = "completed"


class ProgressReview(Base):
    __tablename__ = "progress_reviews"

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    trainee_id = Column(
        String(36),
        ForeignKey("trainees.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    shared_by_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    reviewed_by_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    status = Column(
        Enum(ProgressReviewStatus, name="progress_review_status_enum", native_enum=False),
        nullable=False,
        default=ProgressReviewStatus.IN_REVIEW,
        index=True,
    )
    notes = Column(Text, nullable=True)
    review_comments = Column(Text, nullable=True)
    shared_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)

    trainee = relationship("Trainee")
    shared_by = relationship("User", foreign_keys=[shared_by_id])
    reviewed_by = relationship("User", foreign_keys=[reviewed_by_id])

    @property
    def trainee_name(self) -> str | None:
        return self.trainee.name if self.trainee is not None else None

    @property
    def shared_by_name(self) -> str | None:
        return self.shared_by.name if self.shared_by is not None else None

    def __repr__(self) -> str:
        return f"<ProgressReview id={self.id} trainee={self.trainee_id} status={self.status}>"
