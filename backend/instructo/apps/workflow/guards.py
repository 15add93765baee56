from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy.orm import Session

GuardResult = List[Dict[str, str]]


def _get_value(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def guard_trainee_complete(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    from instructo.apps.projects import models as project_models

    trainee_id = _get_value(after_obj, "id") or _get_value(before_obj, "id")
    if not trainee_id:
        return [{"field": "trainee_id", "reason": "trainee identifier required"}]

    open_projects = (
        db.query(project_models.Project)
        .filter(
            project_models.Project.trainee_id == trainee_id,
            project_models.Project.status != project_models.ProjectStatus.COMPLETED,
        )
        .count()
    )
    if open_projects > 0:
        return [{"field": "projects", "reason": "all projects must be completed"}]
    return []


def guard_project_complete(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    rating = _get_value(after_obj, "performance_rating")
    report_path = _get_value(after_obj, "project_report_path")
    attendance_path = _get_value(after_obj, "attendance_document_path")

    missing = []
    if rating is None:
        missing.append({"field": "performance_rating", "reason": "rating required"})
    elif isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 10:
        missing.append({"field": "performance_rating", "reason": "rating must be between 1 and 10"})
    if not report_path:
        missing.append({"field": "project_report", "reason": "project report required"})
    if not attendance_path:
        missing.append({"field": "attendance_document", "reason": "attendance document required"})
    return missing
