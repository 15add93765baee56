from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from instructo.database import Base
from instructo.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProjectStatus(str, enum.Enum):
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ProgressEntryStatus(str, enum.Enum):
    COMPLETED = "completed"
    IN_PROGRESS = "in_progress"
    NOT_COMPLETED = "not_completed"


class Project(Base):
    """
    A project assigned to one trainee.

    `performance_rating`, `project_report_path` and `attendance_document_path`
    are written together in the single UPDATE that completes the project, so
    they are either all NULL or all set.
    """

    __tablename__ = "projects"
    __table_args__ = (
        CheckConstraint(
            "performance_rating IS NULL OR (performance_rating >= 1 AND performance_rating <= 10)",
            name="ck_projects_rating_range",
        ),
        CheckConstraint(
            "(performance_rating IS NULL AND project_report_path IS NULL "
            "AND attendance_document_path IS NULL) "
            "OR (performance_rating IS NOT NULL AND project_report_path IS NOT NULL "
            "AND attendance_document_path IS NOT NULL)",
            name="ck_projects_completion_fields",
        ),
        Index("ix_projects_trainee_status", "trainee_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    trainee_id = Column(
        String(36),
        ForeignKey("trainees.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    project_name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    start_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)

    status = Column(
        Enum(ProjectStatus, name="project_status_enum", native_enum=False),
        nullable=False,
        default=ProjectStatus.ASSIGNED,
        index=True,
    )
    performance_rating = Column(Integer, nullable=True)
    project_report_path = Column(String(500), nullable=True)
    attendance_document_path = Column(String(500), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    trainee = relationship("Trainee")
    progress_entries = relationship(
        "ProjectProgress",
        back_populates="project",
        order_by="ProjectProgress.date.desc()",
    )

    @property
    def trainee_name(self) -> str | None:
        return self.trainee.name if self.trainee is not None else None

    @property
    def is_locked(self) -> bool:
        return self.status == ProjectStatus.COMPLETED

    def __repr__(self) -> str:
        return f"<Project id={self.id} name={self.project_name} status={self.status}>"


class ProjectProgress(Base):
    """Dated progress log entry for a project."""

    __tablename__ = "project_progress"

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    project_id = Column(
        String(36),
        ForeignKey("projects.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    date = Column(Date, nullable=False)
    description = Column(Text, nullable=False)
    status = Column(
        Enum(ProgressEntryStatus, name="project_progress_status_enum", native_enum=False),
        nullable=False,
        default=ProgressEntryStatus.IN_PROGRESS,
    )
    completion_percentage = Column(Integer, nullable=True)
    challenges_faced = Column(Text, nullable=True)
    next_steps = Column(Text, nullable=True)
    recorded_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    project = relationship("Project", back_populates="progress_entries")
