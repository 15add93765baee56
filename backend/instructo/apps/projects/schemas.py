from __future__ import annotations

import datetime as dt
from typing import List, Optional

from pydantic import BaseModel, Field

from .models import ProgressEntryStatus, ProjectStatus


class ProjectCreate(BaseModel):
    trainee_id: str
    project_name: str = Field(..., min_length=2, max_length=200)
    description: Optional[str] = None
    due_date: Optional[dt.date] = None


class ProjectUpdate(BaseModel):
    project_name: Optional[str] = Field(None, min_length=2, max_length=200)
    description: Optional[str] = None
    due_date: Optional[dt.date] = None


class ProjectRead(BaseModel):
    id: str
    trainee_id: str
    trainee_name: Optional[str] = None
    project_name: str
    description: Optional[str] = None
    start_date: Optional[dt.date] = None
    due_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    status: ProjectStatus
    performance_rating: Optional[int] = None
    project_report_path: Optional[str] = None
    attendance_document_path: Optional[str] = None
    created_at: dt.datetime
    updated_at: dt.datetime

    class Config:
        from_attributes = True


class ProgressCreate(BaseModel):
    date: dt.date
    description: str = Field(..., min_length=10, max_length=2000)
    status: ProgressEntryStatus = ProgressEntryStatus.IN_PROGRESS
    completion_percentage: Optional[int] = Field(None, ge=0, le=100)
    challenges_faced: Optional[str] = Field(None, max_length=1000)
    next_steps: Optional[str] = Field(None, max_length=1000)


class ProgressRead(BaseModel):
    id: str
    project_id: str
    date: dt.date
    description: str
    status: ProgressEntryStatus
    completion_percentage: Optional[int] = None
    challenges_faced: Optional[str] = None
    next_steps: Optional[str] = None
    recorded_by_id: Optional[str] = None
    created_at: dt.datetime

    class Config:
        from_attributes = True


class ProjectDetail(ProjectRead):
    progress_entries: List[ProgressRead] = []
