from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from instructo.apps.accounts.models import User
from instructo.database import get_read_db
from instructo.schemas import Envelope, envelope
from instructo.security import require_admin

from . import schemas, services


router = APIRouter(prefix="/admin/audit-events", tags=["audit"])


@router.get("", response_model=Envelope[List[schemas.AuditEventRead]])
def list_audit_events(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: Session = Depends(get_read_db),
    current_user: User = Depends(require_admin),
):
    return envelope(
        services.list_audit_events(
            db,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            start=start,
            end=end,
        )
    )
