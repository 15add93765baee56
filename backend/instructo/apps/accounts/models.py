# backend/instructo/apps/accounts/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import relationship

from instructo.database import Base
from instructo.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class Role(str, enum.Enum):
    """
    The two kinds of staff account.

    Admins approve trainees and review shared progress; instructors register
    trainees and run their projects. Values match the `role` field the client
    sends on login.
    """

    ADMIN = "admin"
    INSTRUCTOR = "instructor"


class OneTimeCodePurpose(str, enum.Enum):
    LOGIN = "login"
    PASSWORD_RESET = "password_reset"


# ---------------------------------------------------------------------------
# USERS
# ---------------------------------------------------------------------------


class User(Base):
    """
    Staff account (admin or instructor).

    Accounts are created by an existing admin and are never hard-deleted:
    removal through the API only flips `is_active`.
    """

    __tablename__ = "users"
    __table_args__ = (
        Index("ix_users_role_active", "role", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)

    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(100), nullable=False)
    role = Column(
        Enum(Role, name="user_role_enum", native_enum=False),
        nullable=False,
        index=True,
    )

    phone = Column(String(15), nullable=True)
    date_of_birth = Column(Date, nullable=True)

    # Admin profile
    title = Column(String(100), nullable=True)

    # Instructor profile
    employee_id = Column(String(50), nullable=True, index=True)
    department = Column(String(100), nullable=True, index=True)
    designation = Column(String(100), nullable=True)

    hashed_password = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    deactivated_at = Column(DateTime(timezone=True), nullable=True)

    created_by_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    created_by = relationship("User", remote_side=[id])

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_instructor(self) -> bool:
        return self.role == Role.INSTRUCTOR

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} role={self.role}>"


# ---------------------------------------------------------------------------
# ONE-TIME CODES (OTP login / password reset)
# ---------------------------------------------------------------------------


class OneTimeCode(Base):
    """
    Numeric one-time code. Only an Argon2 hash of the code is stored.

    A code is usable while `consumed_at` is NULL and `expires_at` is in the
    future. Redeeming, superseding and burning (too many wrong guesses) all
    set `consumed_at`.
    """

    __tablename__ = "one_time_codes"
    __table_args__ = (
        Index("ix_one_time_codes_user_purpose", "user_id", "purpose", "consumed_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    purpose = Column(
        Enum(OneTimeCodePurpose, name="one_time_code_purpose_enum", native_enum=False),
        nullable=False,
    )
    code_hash = Column(String(255), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    consumed_at = Column(DateTime(timezone=True), nullable=True)
    attempt_count = Column(Integer, nullable=False, default=0)

    request_ip = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    user = relationship("User", lazy="joined")

    def __repr__(self) -> str:
        return f"<OneTimeCode id={self.id} user={self.user_id} purpose={self.purpose}>"
