from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from instructo.apps.accounts import models as account_models
from instructo.apps.accounts import router_public
from instructo.apps.events import dispatcher
from instructo.database import Base, get_db, get_read_db
from instructo.main import app
from instructo.security import get_password_hash

PASSWORD = "Secret123!"


@pytest.fixture()
def client(tmp_path, monkeypatch):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    def override_get_db():
        db = factory()
        try:
            yield db
        finally:
            db.close()

    db = factory()
    db.add(
        account_models.User(
            email="admin@instructo.io",
            name="Asha Admin",
            role=account_models.Role.ADMIN,
            hashed_password=get_password_hash(PASSWORD),
        )
    )
    db.commit()
    db.close()

    monkeypatch.setattr(dispatcher, "WriteSessionLocal", factory)
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    router_public._RATE_LIMIT_STATE.clear()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_read_db] = override_get_db
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
        router_public._RATE_LIMIT_STATE.clear()
        engine.dispose()


def _login(client, email, role, password=PASSWORD):
    response = client.post("/auth/login", json={"email": email, "password": password, "role": role})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['data']['token']}"}


def test_health(client):
    assert client.get("/health").json() == {"success": True, "data": {"status": "ok"}}


def test_validation_errors_use_the_envelope(client):
    response = client.post("/auth/login", json={"email": "not-an-email", "role": "admin"})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Validation error"
    assert {err["field"] for err in body["errors"]} >= {"email", "password"}


def test_bad_credentials_and_missing_token(client):
    response = client.post(
        "/auth/login",
        json={"email": "admin@instructo.io", "password": "wrong", "role": "admin"},
    )
    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"
    assert response.json() == {"success": False, "message": "Invalid email or password"}

    assert client.get("/auth/me").status_code == 401
    bogus = client.get("/auth/me", headers={"Authorization": "Bearer nonsense"})
    assert bogus.status_code == 401
    assert bogus.json()["message"] == "Invalid token"


def test_trainee_and_project_flow_over_http(client):
    admin = _login(client, "admin@instructo.io", "admin")

    created = client.post(
        "/admin/instructors",
        headers=admin,
        json={
            "email": "ravi@instructo.io",
            "name": "Ravi Instructor",
            "password": PASSWORD,
            "department": "Software",
        },
    )
    assert created.status_code == 201, created.text
    assert created.json()["data"]["role"] == "instructor"

    instructor = _login(client, "ravi@instructo.io", "instructor")
    assert client.get("/admin/instructors", headers=instructor).status_code == 403

    # The account.created event was dispatched after the response.
    welcome = client.get("/notifications", headers=instructor).json()["data"]
    assert [n["type"] for n in welcome["items"]] == ["account_created"]

    trainee = client.post(
        "/instructor/trainees",
        headers=instructor,
        json={"name": "A. Sharma", "mobile": "9876543210", "joining_date": "2024-01-10"},
    )
    assert trainee.status_code == 201, trainee.text
    trainee_id = trainee.json()["data"]["id"]
    assert trainee.json()["data"]["status"] == "pending_approval"

    bad_phone = client.post(
        "/instructor/trainees",
        headers=instructor,
        json={"name": "B. Kumar", "mobile": "12", "joining_date": "2024-01-10"},
    )
    assert bad_phone.status_code == 400

    admin_inbox = client.get("/notifications", headers=admin).json()["data"]
    assert admin_inbox["unread_count"] == 1
    assert admin_inbox["items"][0]["type"] == "trainee_created"

    approved = client.put(
        f"/admin/trainees/{trainee_id}/approve",
        headers=admin,
        json={"status": "approved", "comments": "ok"},
    )
    assert approved.status_code == 200, approved.text
    assert approved.json()["data"]["status"] == "approved"
    assert approved.json()["message"] == "Trainee approved successfully"

    again = client.put(f"/admin/trainees/{trainee_id}/reject", headers=admin, json={})
    assert again.status_code == 409
    assert again.json()["success"] is False

    project = client.post(
        "/instructor/projects",
        headers=instructor,
        json={"trainee_id": trainee_id, "project_name": "Inventory App"},
    )
    assert project.status_code == 201, project.text
    project_id = project.json()["data"]["id"]
    assert client.put(f"/instructor/projects/{project_id}/start", headers=instructor).status_code == 200

    incomplete = client.put(
        f"/instructor/projects/{project_id}/complete",
        headers=instructor,
        data={"performance_rating": "8"},
        files={"project_report": ("report.pdf", b"%PDF report", "application/pdf")},
    )
    assert incomplete.status_code == 400
    assert incomplete.json()["errors"] == [
        {"field": "attendance_document", "reason": "attendance document required"}
    ]

    completed = client.put(
        f"/instructor/projects/{project_id}/complete",
        headers=instructor,
        data={"performance_rating": "8"},
        files={
            "project_report": ("report.pdf", b"%PDF report", "application/pdf"),
            "attendance_document": ("attendance.pdf", b"%PDF attendance", "application/pdf"),
        },
    )
    assert completed.status_code == 200, completed.text
    body = completed.json()["data"]
    assert body["status"] == "completed"
    assert body["performance_rating"] == 8
    assert body["project_report_path"] and body["attendance_document_path"]

    locked = client.put(
        f"/instructor/projects/{project_id}",
        headers=instructor,
        json={"project_name": "Renamed"},
    )
    assert locked.status_code == 409

    documents = client.get("/instructor/documents", headers=instructor, params={"project_id": project_id})
    assert len(documents.json()["data"]) == 2

    stats = client.get("/notifications/stats", headers=admin).json()["data"]
    assert stats["by_type"]["project_completed"] == 1

    missing = client.get("/admin/trainees/does-not-exist", headers=admin)
    assert missing.status_code == 404
    assert missing.json() == {"success": False, "message": "Trainee not found"}
