from __future__ import annotations

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field

from .models import TraineeStatus

PHONE_PATTERN = r"^\d{10,15}$"


class TraineeBase(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    institution_name: Optional[str] = Field(None, max_length=200)
    degree: Optional[str] = Field(None, max_length=100)
    mobile: str = Field(..., pattern=PHONE_PATTERN)
    joining_date: date
    expected_completion_date: Optional[date] = None
    local_guardian_name: Optional[str] = Field(None, max_length=100)
    local_guardian_phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    local_guardian_email: Optional[EmailStr] = None
    reference_person_name: Optional[str] = Field(None, max_length=100)
    reference_person_phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    reference_person_email: Optional[EmailStr] = None


class TraineeCreate(TraineeBase):
    pass


class TraineeUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    institution_name: Optional[str] = Field(None, max_length=200)
    degree: Optional[str] = Field(None, max_length=100)
    mobile: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    joining_date: Optional[date] = None
    expected_completion_date: Optional[date] = None
    local_guardian_name: Optional[str] = Field(None, max_length=100)
    local_guardian_phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    local_guardian_email: Optional[EmailStr] = None
    reference_person_name: Optional[str] = Field(None, max_length=100)
    reference_person_phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    reference_person_email: Optional[EmailStr] = None


class TraineeRead(TraineeBase):
    id: str
    instructor_id: str
    instructor_name: Optional[str] = None
    status: TraineeStatus
    reviewed_by_id: Optional[str] = None
    review_comments: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    # Stored rows may predate the stricter request validation.
    mobile: str
    local_guardian_email: Optional[str] = None
    reference_person_email: Optional[str] = None
    local_guardian_phone: Optional[str] = None
    reference_person_phone: Optional[str] = None

    class Config:
        from_attributes = True


class TraineeDecision(BaseModel):
    """Body of PUT /admin/trainees/{id}/approve."""

    status: Literal["approved", "rejected"] = "approved"
    comments: Optional[str] = Field(None, max_length=2000)


class TraineeReject(BaseModel):
    comments: Optional[str] = Field(None, max_length=2000)


class TraineeReassign(BaseModel):
    instructor_id: str
