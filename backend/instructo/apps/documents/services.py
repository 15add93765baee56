from __future__ import annotations

import logging
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from instructo.apps.accounts import models as account_models
from instructo.apps.audit import services as audit_services
from instructo.apps.projects import models as project_models
from instructo.apps.trainees import services as trainee_services
from instructo.errors import Forbidden, NotFound, ProjectLocked, ValidationError

from . import models
from .storage import DocumentStorage, StoredFile, get_storage

logger = logging.getLogger(__name__)


def add_document(
    db: Session,
    *,
    trainee_id: str,
    stored: StoredFile,
    document_type: models.DocumentType,
    uploaded_by: account_models.User,
    project_id: Optional[str] = None,
    document_name: Optional[str] = None,
    is_visible_to_trainee: bool = False,
) -> models.Document:
    """Record metadata for an already stored file. Joins the caller's transaction."""
    document = models.Document(
        trainee_id=trainee_id,
        project_id=project_id,
        document_name=(document_name or stored.original_name)[:200],
        document_type=document_type,
        file_path=stored.path,
        original_filename=stored.original_name,
        content_type=stored.content_type,
        size_bytes=stored.size_bytes,
        is_visible_to_trainee=is_visible_to_trainee,
        uploaded_by_id=uploaded_by.id,
    )
    db.add(document)
    db.flush()
    return document


def upload_document(
    db: Session,
    *,
    instructor: account_models.User,
    trainee_id: str,
    upload: Any,
    project_id: Optional[str] = None,
    document_type: models.DocumentType = models.DocumentType.OTHER,
    document_name: Optional[str] = None,
    is_visible_to_trainee: bool = False,
    storage: Optional[DocumentStorage] = None,
) -> models.Document:
    if upload is None or not getattr(upload, "filename", None):
        raise ValidationError(
            "No file uploaded",
            detail=[{"field": "file", "reason": "file required"}],
        )
    trainee = trainee_services.get_owned_trainee(db, trainee_id, instructor)

    if project_id:
        project = db.get(project_models.Project, project_id)
        if project is None or project.trainee_id != trainee.id:
            raise ValidationError(
                "Project does not belong to this trainee",
                detail=[{"field": "project_id", "reason": "not a project of the trainee"}],
            )
        if project.is_locked:
            raise ProjectLocked()

    storage = storage or get_storage()
    stored = storage.save(upload, folder=f"trainees/{trainee.id}")
    try:
        document = add_document(
            db,
            trainee_id=trainee.id,
            project_id=project_id,
            stored=stored,
            document_type=document_type,
            uploaded_by=instructor,
            document_name=document_name,
            is_visible_to_trainee=is_visible_to_trainee,
        )
        audit_services.log_event(
            db,
            actor_user_id=instructor.id,
            actor_role=instructor.role.value,
            entity_type="document",
            entity_id=document.id,
            action="uploaded",
            after={"trainee_id": trainee.id, "document_type": document_type.value},
        )
        db.commit()
    except Exception:
        db.rollback()
        storage.delete(stored.path)
        raise
    db.refresh(document)
    logger.info("Stored %s document %s for trainee %s", document_type.value, document.id, trainee.id)
    return document


def list_documents(
    db: Session,
    *,
    instructor: account_models.User,
    trainee_id: Optional[str] = None,
    project_id: Optional[str] = None,
    document_type: Optional[models.DocumentType] = None,
) -> List[models.Document]:
    """Documents of the instructor's own trainees."""
    from instructo.apps.trainees import models as trainee_models

    qs = (
        db.query(models.Document)
        .join(trainee_models.Trainee, trainee_models.Trainee.id == models.Document.trainee_id)
        .filter(trainee_models.Trainee.instructor_id == instructor.id)
    )
    if trainee_id:
        qs = qs.filter(models.Document.trainee_id == trainee_id)
    if project_id:
        qs = qs.filter(models.Document.project_id == project_id)
    if document_type is not None:
        qs = qs.filter(models.Document.document_type == document_type)
    return qs.order_by(models.Document.uploaded_at.desc(), models.Document.id.desc()).all()


def delete_document(
    db: Session,
    *,
    document_id: str,
    instructor: account_models.User,
    storage: Optional[DocumentStorage] = None,
) -> None:
    """
    Remove a document uploaded by `instructor`. Documents attached to a
    completed project are part of its record and cannot be removed.
    """
    document = db.get(models.Document, document_id)
    if document is None:
        raise NotFound("Document not found")
    if document.uploaded_by_id != instructor.id:
        raise Forbidden("Only the uploader can delete this document")
    if document.project is not None and document.project.is_locked:
        raise ProjectLocked("Documents of a completed project cannot be deleted")

    file_path = document.file_path
    db.delete(document)
    audit_services.log_event(
        db,
        actor_user_id=instructor.id,
        actor_role=instructor.role.value,
        entity_type="document",
        entity_id=document_id,
        action="deleted",
        before={"file_path": file_path},
    )
    db.commit()
    (storage or get_storage()).delete(file_path)
