from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from instructo.database import Base
from instructo.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TraineeStatus(str, enum.Enum):
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACTIVE = "active"
    COMPLETED = "completed"


# Trainees in these states are archived and accept no further edits.
TERMINAL_TRAINEE_STATUSES = (TraineeStatus.REJECTED, TraineeStatus.COMPLETED)


class Trainee(Base):
    """
    A person in training, owned by exactly one instructor.

    Status only moves forward through the `trainee` workflow
    (see instructo.apps.workflow.registry). Rejected and completed trainees
    are archived by setting `archived_at`; rows are never deleted.
    """

    __tablename__ = "trainees"
    __table_args__ = (
        Index("ix_trainees_instructor_status", "instructor_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)

    name = Column(String(100), nullable=False, index=True)
    institution_name = Column(String(200), nullable=True)
    degree = Column(String(100), nullable=True)
    mobile = Column(String(15), nullable=False)
    joining_date = Column(Date, nullable=False)
    expected_completion_date = Column(Date, nullable=True)

    local_guardian_name = Column(String(100), nullable=True)
    local_guardian_phone = Column(String(15), nullable=True)
    local_guardian_email = Column(String(255), nullable=True)
    reference_person_name = Column(String(100), nullable=True)
    reference_person_phone = Column(String(15), nullable=True)
    reference_person_email = Column(String(255), nullable=True)

    instructor_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    status = Column(
        Enum(TraineeStatus, name="trainee_status_enum", native_enum=False),
        nullable=False,
        default=TraineeStatus.PENDING_APPROVAL,
        index=True,
    )

    reviewed_by_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    review_comments = Column(Text, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    archived_at = Column(DateTime(timezone=True), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    instructor = relationship("User", foreign_keys=[instructor_id])
    reviewed_by = relationship("User", foreign_keys=[reviewed_by_id])

    @property
    def instructor_name(self) -> str | None:
        return self.instructor.name if self.instructor is not None else None

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    def __repr__(self) -> str:
        return f"<Trainee id={self.id} name={self.name} status={self.status}>"
