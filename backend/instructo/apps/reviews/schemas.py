from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .models import ProgressReviewStatus


class ShareProgressRequest(BaseModel):
    trainee_id: str
    notes: Optional[str] = Field(None, max_length=2000)


class ReviewComplete(BaseModel):
    comments: Optional[str] = Field(None, max_length=2000)


class ProgressReviewRead(BaseModel):
    id: str
    trainee_id: str
    trainee_name: Optional[str] = None
    shared_by_id: str
    shared_by_name: Optional[str] = None
    reviewed_by_id: Optional[str] = None
    status: ProgressReviewStatus
    notes: Optional[str] = None
    review_comments: Optional[str] = None
    shared_at: datetime
    reviewed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
