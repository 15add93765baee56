from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from .models import DocumentType


class DocumentRead(BaseModel):
    id: str
    trainee_id: str
    project_id: Optional[str] = None
    document_name: Optional[str] = None
    document_type: DocumentType
    file_path: str
    original_filename: Optional[str] = None
    content_type: Optional[str] = None
    size_bytes: Optional[int] = None
    is_visible_to_trainee: bool
    uploaded_by_id: str
    uploaded_at: datetime

    class Config:
        from_attributes = True
