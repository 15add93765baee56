from __future__ import annotations

import io
from datetime import date

import pytest
from sqlalchemy import update
from starlette.datastructures import Headers, UploadFile

from instructo.apps.documents import models as document_models
from instructo.apps.events import models as event_models
from instructo.apps.events import outbox
from instructo.apps.projects import models as project_models
from instructo.apps.projects import router as project_router
from instructo.apps.projects import schemas as project_schemas
from instructo.apps.projects import services as project_services
from instructo.apps.trainees import models as trainee_models
from instructo.apps.trainees import services as trainee_services
from instructo.errors import (
    FileTooLarge,
    Forbidden,
    InvalidTransition,
    NotFound,
    ProjectLocked,
    TraineeNotActive,
    ValidationError,
)

Status = project_models.ProjectStatus


def _upload(name: str, content: bytes = b"%PDF-1.4 report body", content_type: str = "application/pdf") -> UploadFile:
    return UploadFile(
        file=io.BytesIO(content),
        filename=name,
        headers=Headers({"content-type": content_type}),
    )


def _stored_files(storage):
    if not storage.root.exists():
        return []
    return [p for p in storage.root.rglob("*") if p.is_file()]


@pytest.fixture()
def approved_trainee(db_session, admin_user, instructor_user, trainee_payload):
    trainee = trainee_services.create_trainee(db_session, instructor=instructor_user, data=trainee_payload())
    return trainee_services.approve(db_session, trainee_id=trainee.id, admin=admin_user, comments="ok")


@pytest.fixture()
def started_project(db_session, instructor_user, approved_trainee):
    project = project_services.create_project(
        db_session,
        instructor=instructor_user,
        data=project_schemas.ProjectCreate(trainee_id=approved_trainee.id, project_name="Inventory App"),
    )
    return project_services.start_project(db_session, project_id=project.id, instructor=instructor_user)


def test_inventory_app_runs_to_completion(db_session, instructor_user, approved_trainee, storage):
    project = project_services.create_project(
        db_session,
        instructor=instructor_user,
        data=project_schemas.ProjectCreate(trainee_id=approved_trainee.id, project_name="Inventory App"),
    )
    assert project.status == Status.ASSIGNED
    assert project.due_date is None
    assert project.start_date == date.today()
    assert project.performance_rating is None

    # First assignment activates an approved trainee.
    db_session.refresh(approved_trainee)
    assert approved_trainee.status == trainee_models.TraineeStatus.ACTIVE

    started = project_services.start_project(db_session, project_id=project.id, instructor=instructor_user)
    assert started.status == Status.IN_PROGRESS

    completed = project_services.complete_project(
        db_session,
        project_id=project.id,
        instructor=instructor_user,
        performance_rating=8,
        project_report=_upload("Final Report.pdf"),
        attendance_document=_upload("attendance.xlsx", b"sheet", "application/vnd.ms-excel"),
        storage=storage,
        today=date(2024, 3, 1),
    )

    assert completed.status == Status.COMPLETED
    assert completed.performance_rating == 8
    assert completed.end_date == date(2024, 3, 1)
    assert storage.exists(completed.project_report_path)
    assert storage.exists(completed.attendance_document_path)
    assert completed.project_report_path.startswith(f"trainees/{approved_trainee.id}/projects/{project.id}/")

    documents = (
        db_session.query(document_models.Document)
        .filter(document_models.Document.project_id == project.id)
        .all()
    )
    assert {d.document_type for d in documents} == {
        document_models.DocumentType.PROJECT_REPORT,
        document_models.DocumentType.ATTENDANCE_RECORD,
    }

    event = (
        db_session.query(event_models.DomainEvent)
        .filter(event_models.DomainEvent.event_type == outbox.PROJECT_COMPLETED)
        .one()
    )
    assert event.payload_json["performance_rating"] == 8
    assert event.payload_json["trainee_name"] == "A. Sharma"

    with pytest.raises(ProjectLocked):
        project_services.complete_project(
            db_session,
            project_id=project.id,
            instructor=instructor_user,
            performance_rating=9,
            project_report=_upload("again.pdf"),
            attendance_document=_upload("again.pdf"),
            storage=storage,
        )
    with pytest.raises(ProjectLocked):
        project_services.update_project(
            db_session,
            project_id=project.id,
            instructor=instructor_user,
            data=project_schemas.ProjectUpdate(project_name="Renamed"),
        )
    with pytest.raises(ProjectLocked):
        project_services.add_progress(
            db_session,
            project_id=project.id,
            instructor=instructor_user,
            data=project_schemas.ProgressCreate(date=date(2024, 3, 2), description="Late progress entry"),
        )


@pytest.mark.parametrize("rating", [None, 0, 11, True])
def test_invalid_rating_leaves_project_untouched(db_session, instructor_user, started_project, storage, rating):
    with pytest.raises(ValidationError) as excinfo:
        project_services.complete_project(
            db_session,
            project_id=started_project.id,
            instructor=instructor_user,
            performance_rating=rating,
            project_report=_upload("report.pdf"),
            attendance_document=_upload("attendance.pdf"),
            storage=storage,
        )

    assert excinfo.value.detail[0]["field"] == "performance_rating"
    db_session.refresh(started_project)
    assert started_project.status == Status.IN_PROGRESS
    assert started_project.performance_rating is None
    assert started_project.project_report_path is None
    assert _stored_files(storage) == []


def test_missing_documents_are_reported(db_session, instructor_user, started_project, storage):
    with pytest.raises(ValidationError) as excinfo:
        project_services.complete_project(
            db_session,
            project_id=started_project.id,
            instructor=instructor_user,
            performance_rating=7,
            project_report=None,
            attendance_document=_upload("", b""),
            storage=storage,
        )

    assert {d["field"] for d in excinfo.value.detail} == {"project_report", "attendance_document"}


def test_storage_failure_removes_saved_report(db_session, instructor_user, started_project, storage):
    with pytest.raises(ValidationError):
        project_services.complete_project(
            db_session,
            project_id=started_project.id,
            instructor=instructor_user,
            performance_rating=7,
            project_report=_upload("report.pdf"),
            attendance_document=_upload("attendance.pdf", b""),
            storage=storage,
        )

    assert _stored_files(storage) == []
    db_session.refresh(started_project)
    assert started_project.status == Status.IN_PROGRESS


def test_oversized_document_is_rejected(db_session, instructor_user, started_project, storage):
    with pytest.raises(FileTooLarge):
        project_services.complete_project(
            db_session,
            project_id=started_project.id,
            instructor=instructor_user,
            performance_rating=7,
            project_report=_upload("report.pdf", b"x" * (storage.max_bytes + 1)),
            attendance_document=_upload("attendance.pdf"),
            storage=storage,
        )
    assert _stored_files(storage) == []


def test_failure_after_files_are_stored_rolls_everything_back(
    db_session, instructor_user, started_project, storage, monkeypatch
):
    def broken_emit(*args, **kwargs):
        raise RuntimeError("outbox unavailable")

    monkeypatch.setattr(outbox, "emit", broken_emit)

    with pytest.raises(RuntimeError):
        project_services.complete_project(
            db_session,
            project_id=started_project.id,
            instructor=instructor_user,
            performance_rating=8,
            project_report=_upload("report.pdf"),
            attendance_document=_upload("attendance.pdf"),
            storage=storage,
        )

    db_session.refresh(started_project)
    assert started_project.status == Status.IN_PROGRESS
    assert started_project.performance_rating is None
    assert started_project.attendance_document_path is None
    assert db_session.query(document_models.Document).count() == 0
    assert _stored_files(storage) == []


def test_complete_requires_in_progress(db_session, instructor_user, approved_trainee, storage):
    project = project_services.create_project(
        db_session,
        instructor=instructor_user,
        data=project_schemas.ProjectCreate(trainee_id=approved_trainee.id, project_name="Payroll"),
    )

    with pytest.raises(InvalidTransition):
        project_services.complete_project(
            db_session,
            project_id=project.id,
            instructor=instructor_user,
            performance_rating=8,
            project_report=_upload("report.pdf"),
            attendance_document=_upload("attendance.pdf"),
            storage=storage,
        )
    assert _stored_files(storage) == []


def test_project_needs_an_assignable_trainee(db_session, instructor_user, trainee_payload):
    pending = trainee_services.create_trainee(db_session, instructor=instructor_user, data=trainee_payload())

    with pytest.raises(TraineeNotActive):
        project_services.create_project(
            db_session,
            instructor=instructor_user,
            data=project_schemas.ProjectCreate(trainee_id=pending.id, project_name="Too early"),
        )
    with pytest.raises(TraineeNotActive):
        project_services.create_project(
            db_session,
            instructor=instructor_user,
            data=project_schemas.ProjectCreate(trainee_id="missing", project_name="Nobody"),
        )


def test_projects_are_scoped_to_owner(db_session, other_instructor, started_project):
    with pytest.raises(NotFound):
        project_services.get_owned_project(db_session, started_project.id, other_instructor)
    assert project_services.list_for_instructor(db_session, instructor=other_instructor) == []


def test_progress_entries_show_on_detail(db_session, instructor_user, started_project):
    project_services.add_progress(
        db_session,
        project_id=started_project.id,
        instructor=instructor_user,
        data=project_schemas.ProgressCreate(
            date=date(2024, 2, 1),
            description="Built the stock ledger screens",
            completion_percentage=40,
        ),
    )

    result = project_router.get_project(started_project.id, db=db_session, current_user=instructor_user)
    detail = project_schemas.ProjectDetail.model_validate(result["data"])

    assert detail.status == Status.IN_PROGRESS
    assert [entry.completion_percentage for entry in detail.progress_entries] == [40]


def test_update_project_fields(db_session, instructor_user, started_project):
    updated = project_services.update_project(
        db_session,
        project_id=started_project.id,
        instructor=instructor_user,
        data=project_schemas.ProjectUpdate(due_date=date(2024, 4, 30), description="Stock and orders"),
    )
    assert updated.due_date == date(2024, 4, 30)
    assert updated.description == "Stock and orders"
    assert updated.project_name == "Inventory App"


def test_other_instructors_trainee_is_forbidden_before_status_is_checked(
    db_session, instructor_user, other_instructor, trainee_payload
):
    pending = trainee_services.create_trainee(db_session, instructor=instructor_user, data=trainee_payload())

    with pytest.raises(Forbidden):
        project_services.create_project(
            db_session,
            instructor=other_instructor,
            data=project_schemas.ProjectCreate(trainee_id=pending.id, project_name="Not mine"),
        )


def test_project_is_refused_when_trainee_completes_concurrently(
    db_session, admin_user, instructor_user, trainee_payload
):
    trainee = trainee_services.create_trainee(db_session, instructor=instructor_user, data=trainee_payload())
    trainee_services.approve(db_session, trainee_id=trainee.id, admin=admin_user)
    trainee_services.activate_owned(db_session, trainee_id=trainee.id, instructor=instructor_user)

    # Another request completes the trainee after this session read it.
    db_session.execute(
        update(trainee_models.Trainee)
        .where(trainee_models.Trainee.id == trainee.id)
        .values(status=trainee_models.TraineeStatus.COMPLETED)
        .execution_options(synchronize_session=False)
    )
    db_session.commit()
    assert trainee.status == trainee_models.TraineeStatus.ACTIVE

    with pytest.raises(TraineeNotActive):
        project_services.create_project(
            db_session,
            instructor=instructor_user,
            data=project_schemas.ProjectCreate(trainee_id=trainee.id, project_name="Too late"),
        )
    assert db_session.query(project_models.Project).count() == 0
