from __future__ import annotations

import io
from datetime import date

import pytest
from starlette.datastructures import Headers, UploadFile

from instructo.apps.documents import models as document_models
from instructo.apps.documents import services as document_services
from instructo.apps.projects import models as project_models
from instructo.apps.projects import schemas as project_schemas
from instructo.apps.projects import services as project_services
from instructo.apps.trainees import services as trainee_services
from instructo.errors import Forbidden, NotFound, ProjectLocked, ValidationError


def _upload(name: str, content: bytes = b"contents", content_type: str = "application/pdf") -> UploadFile:
    return UploadFile(
        file=io.BytesIO(content),
        filename=name,
        headers=Headers({"content-type": content_type}),
    )


@pytest.fixture()
def trainee(db_session, admin_user, instructor_user, trainee_payload):
    created = trainee_services.create_trainee(db_session, instructor=instructor_user, data=trainee_payload())
    return trainee_services.approve(db_session, trainee_id=created.id, admin=admin_user)


def test_upload_document_records_metadata(db_session, instructor_user, trainee, storage):
    document = document_services.upload_document(
        db_session,
        instructor=instructor_user,
        trainee_id=trainee.id,
        upload=_upload("Offer Letter.pdf", b"%PDF offer"),
        document_name="Offer letter",
        storage=storage,
    )

    assert document.document_type == document_models.DocumentType.OTHER
    assert document.document_name == "Offer letter"
    assert document.original_filename == "Offer Letter.pdf"
    assert document.content_type == "application/pdf"
    assert document.size_bytes == len(b"%PDF offer")
    assert document.file_path.startswith(f"trainees/{trainee.id}/Offer_Letter_")
    assert storage.resolve(document.file_path).read_bytes() == b"%PDF offer"


def test_upload_rejects_disallowed_extension(db_session, instructor_user, trainee, storage):
    with pytest.raises(ValidationError) as excinfo:
        document_services.upload_document(
            db_session,
            instructor=instructor_user,
            trainee_id=trainee.id,
            upload=_upload("script.exe", b"MZ"),
            storage=storage,
        )
    assert excinfo.value.detail == [{"field": "file", "reason": "file type not allowed"}]
    assert db_session.query(document_models.Document).count() == 0


def test_upload_requires_owned_trainee(db_session, other_instructor, trainee, storage):
    with pytest.raises(Forbidden):
        document_services.upload_document(
            db_session,
            instructor=other_instructor,
            trainee_id=trainee.id,
            upload=_upload("notes.pdf"),
            storage=storage,
        )


def test_upload_checks_project_belongs_to_trainee(db_session, instructor_user, trainee, storage):
    with pytest.raises(ValidationError):
        document_services.upload_document(
            db_session,
            instructor=instructor_user,
            trainee_id=trainee.id,
            project_id="not-a-project",
            upload=_upload("notes.pdf"),
            storage=storage,
        )


def test_attendance_upload_and_delete(db_session, instructor_user, other_instructor, trainee, storage):
    document = document_services.upload_document(
        db_session,
        instructor=instructor_user,
        trainee_id=trainee.id,
        upload=_upload("week1.xlsx", b"sheet", "application/vnd.ms-excel"),
        document_type=document_models.DocumentType.ATTENDANCE_RECORD,
        storage=storage,
    )

    listed = document_services.list_documents(
        db_session,
        instructor=instructor_user,
        document_type=document_models.DocumentType.ATTENDANCE_RECORD,
    )
    assert [d.id for d in listed] == [document.id]
    assert document_services.list_documents(db_session, instructor=other_instructor) == []

    with pytest.raises(Forbidden):
        document_services.delete_document(
            db_session,
            document_id=document.id,
            instructor=other_instructor,
            storage=storage,
        )

    path = document.file_path
    document_services.delete_document(
        db_session,
        document_id=document.id,
        instructor=instructor_user,
        storage=storage,
    )
    assert not storage.exists(path)
    with pytest.raises(NotFound):
        document_services.delete_document(
            db_session,
            document_id=document.id,
            instructor=instructor_user,
            storage=storage,
        )


def test_completed_project_documents_are_locked(db_session, instructor_user, trainee, storage):
    project = project_services.create_project(
        db_session,
        instructor=instructor_user,
        data=project_schemas.ProjectCreate(trainee_id=trainee.id, project_name="Inventory App"),
    )
    project_services.start_project(db_session, project_id=project.id, instructor=instructor_user)
    project_services.complete_project(
        db_session,
        project_id=project.id,
        instructor=instructor_user,
        performance_rating=8,
        project_report=_upload("report.pdf"),
        attendance_document=_upload("attendance.pdf"),
        storage=storage,
        today=date(2024, 3, 1),
    )
    assert project.status == project_models.ProjectStatus.COMPLETED

    report = (
        db_session.query(document_models.Document)
        .filter(
            document_models.Document.project_id == project.id,
            document_models.Document.document_type == document_models.DocumentType.PROJECT_REPORT,
        )
        .one()
    )
    with pytest.raises(ProjectLocked):
        document_services.delete_document(
            db_session,
            document_id=report.id,
            instructor=instructor_user,
            storage=storage,
        )
    assert storage.exists(report.file_path)

    with pytest.raises(ProjectLocked):
        document_services.upload_document(
            db_session,
            instructor=instructor_user,
            trainee_id=trainee.id,
            project_id=project.id,
            upload=_upload("late.pdf"),
            storage=storage,
        )
