from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.orm import Session

from instructo.apps.accounts.models import User
from instructo.database import get_db
from instructo.schemas import Envelope, envelope
from instructo.security import require_instructor

from . import models, schemas, services

router = APIRouter(prefix="/instructor", tags=["instructor_documents"])


@router.post(
    "/documents/upload",
    response_model=Envelope[schemas.DocumentRead],
    status_code=status.HTTP_201_CREATED,
)
def upload_document(
    trainee_id: str = Form(...),
    project_id: Optional[str] = Form(None),
    document_type: models.DocumentType = Form(models.DocumentType.OTHER),
    document_name: Optional[str] = Form(None),
    is_visible_to_trainee: bool = Form(False),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_instructor),
):
    document = services.upload_document(
        db,
        instructor=current_user,
        trainee_id=trainee_id,
        upload=file,
        project_id=project_id or None,
        document_type=document_type,
        document_name=document_name,
        is_visible_to_trainee=is_visible_to_trainee,
    )
    return envelope(document, "Document uploaded successfully")


@router.post(
    "/attendance/upload",
    response_model=Envelope[schemas.DocumentRead],
    status_code=status.HTTP_201_CREATED,
)
def upload_attendance(
    trainee_id: str = Form(...),
    project_id: Optional[str] = Form(None),
    document_name: Optional[str] = Form(None),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_instructor),
):
    document = services.upload_document(
        db,
        instructor=current_user,
        trainee_id=trainee_id,
        upload=file,
        project_id=project_id or None,
        document_type=models.DocumentType.ATTENDANCE_RECORD,
        document_name=document_name,
    )
    return envelope(document, "Attendance uploaded successfully")


@router.get("/documents", response_model=Envelope[List[schemas.DocumentRead]])
def list_documents(
    trainee_id: Optional[str] = Query(None),
    project_id: Optional[str] = Query(None),
    document_type: Optional[models.DocumentType] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_instructor),
):
    documents = services.list_documents(
        db,
        instructor=current_user,
        trainee_id=trainee_id,
        project_id=project_id,
        document_type=document_type,
    )
    return envelope(documents)


@router.delete("/documents/{document_id}", response_model=Envelope)
def delete_document(
    document_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_instructor),
):
    services.delete_document(db, document_id=document_id, instructor=current_user)
    return envelope(None, "Document deleted successfully")
