from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import relationship

from instructo.database import Base
from instructo.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentType(str, enum.Enum):
    PROJECT_REPORT = "project_report"
    ATTENDANCE_RECORD = "attendance_record"
    OTHER = "other"


class Document(Base):
    """
    Metadata for a stored file. Trainees and projects are never deleted, so
    the foreign keys RESTRICT instead of cascading.
    """

    __tablename__ = "documents"
    __table_args__ = (
        Index("ix_documents_trainee_type", "trainee_id", "document_type"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    trainee_id = Column(
        String(36),
        ForeignKey("trainees.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    project_id = Column(
        String(36),
        ForeignKey("projects.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    document_name = Column(String(200), nullable=True)
    document_type = Column(
        Enum(DocumentType, name="document_type_enum", native_enum=False),
        nullable=False,
        default=DocumentType.OTHER,
    )
    file_path = Column(String(500), nullable=False)
    original_filename = Column(String(255), nullable=True)
    content_type = Column(String(128), nullable=True)
    size_bytes = Column(Integer, nullable=True)
    is_visible_to_trainee = Column(Boolean, nullable=False, default=False)

    uploaded_by_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    uploaded_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    trainee = relationship("Trainee")
    project = relationship("Project")
    uploaded_by = relationship("User")

    def __repr__(self) -> str:
        return f"<Document id={self.id} type={self.document_type} trainee={self.trainee_id}>"
