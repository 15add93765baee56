from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["DATABASE_WRITE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ.setdefault("NOTIFICATIONS_EMAIL_PROVIDER", "noop")
# Keep Argon2 cheap in tests.
os.environ.setdefault("ARGON2_TIME_COST", "1")
os.environ.setdefault("ARGON2_MEMORY_COST", "1024")
os.environ.setdefault("ARGON2_PARALLELISM", "1")

import instructo  # noqa: E402,F401  (registers every model on Base.metadata)
from instructo.database import Base  # noqa: E402


@pytest.fixture()
def db_session():
    engine = create_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture()
def session_factory(tmp_path):
    """
    File-backed database for tests that need several independent sessions
    (interleaved writers).
    """
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'instructo.db'}",
        connect_args={"check_same_thread": False, "timeout": 5},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    try:
        yield factory
    finally:
        engine.dispose()


@pytest.fixture()
def storage(tmp_path):
    from instructo.apps.documents.storage import DocumentStorage

    return DocumentStorage(tmp_path / "uploads", max_bytes=1024 * 1024)


TEST_PASSWORD = "Secret123!"


def make_user(db, *, role, email, name, password=TEST_PASSWORD, **fields):
    from instructo.apps.accounts import models as account_models
    from instructo.security import get_password_hash

    fields.setdefault("is_active", True)
    user = account_models.User(
        email=email,
        name=name,
        role=account_models.Role(role),
        hashed_password=get_password_hash(password),
        **fields,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture()
def admin_user(db_session):
    return make_user(db_session, role="admin", email="admin@instructo.io", name="Asha Admin")


@pytest.fixture()
def instructor_user(db_session):
    return make_user(
        db_session,
        role="instructor",
        email="ravi@instructo.io",
        name="Ravi Instructor",
        department="Software",
    )


@pytest.fixture()
def other_instructor(db_session):
    return make_user(
        db_session,
        role="instructor",
        email="meera@instructo.io",
        name="Meera Instructor",
        department="Networks",
    )


@pytest.fixture()
def user_factory(db_session):
    def factory(**kwargs):
        return make_user(db_session, **kwargs)

    return factory


@pytest.fixture()
def trainee_payload():
    from datetime import date

    from instructo.apps.trainees import schemas as trainee_schemas

    def build(**overrides):
        fields = {
            "name": "A. Sharma",
            "mobile": "9876543210",
            "joining_date": date(2024, 1, 10),
            "institution_name": "City Engineering College",
            "degree": "B.Tech",
        }
        fields.update(overrides)
        return trainee_schemas.TraineeCreate(**fields)

    return build
