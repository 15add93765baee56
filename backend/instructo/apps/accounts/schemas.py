# backend/instructo/apps/accounts/schemas.py

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from .models import Role

# ---------------------------------------------------------------------------
# USERS
# ---------------------------------------------------------------------------


class UserBase(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=15)
    date_of_birth: Optional[date] = None


class UserRead(UserBase):
    id: str
    role: Role
    title: Optional[str] = None
    employee_id: Optional[str] = None
    department: Optional[str] = None
    designation: Optional[str] = None
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AdminCreate(UserBase):
    password: str = Field(..., min_length=6)
    title: Optional[str] = Field(None, max_length=100)


class AdminUpdate(BaseModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=15)
    date_of_birth: Optional[date] = None
    title: Optional[str] = Field(None, max_length=100)
    password: Optional[str] = Field(None, min_length=6)
    is_active: Optional[bool] = None


class InstructorCreate(UserBase):
    password: str = Field(..., min_length=6)
    employee_id: Optional[str] = Field(None, max_length=50)
    department: Optional[str] = Field(None, max_length=100)
    designation: Optional[str] = Field(None, max_length=100)


class InstructorUpdate(BaseModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=15)
    date_of_birth: Optional[date] = None
    employee_id: Optional[str] = Field(None, max_length=50)
    department: Optional[str] = Field(None, max_length=100)
    designation: Optional[str] = Field(None, max_length=100)
    password: Optional[str] = Field(None, min_length=6)
    is_active: Optional[bool] = None


class ProfileUpdate(BaseModel):
    """Fields a user may change on their own account."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=15)
    date_of_birth: Optional[date] = None
    title: Optional[str] = Field(None, max_length=100)
    department: Optional[str] = Field(None, max_length=100)
    designation: Optional[str] = Field(None, max_length=100)


# ---------------------------------------------------------------------------
# AUTH
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    role: Role


class SendOtpRequest(BaseModel):
    email: EmailStr
    role: Role


class VerifyOtpRequest(BaseModel):
    email: EmailStr
    otp: str = Field(..., min_length=4, max_length=12)
    role: Role


class ForgotPasswordRequest(BaseModel):
    email: EmailStr
    role: Role


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    role: Role
    otp: str = Field(..., min_length=4, max_length=12)
    new_password: str = Field(..., min_length=6)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)


class AuthSession(BaseModel):
    """
    Result of a successful login / OTP verification / refresh.

    The client keeps `token`, `user` and `role` locally; the server keeps
    nothing beyond the signing key.
    """

    token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserRead
    role: Role


class OtpSent(BaseModel):
    email: EmailStr
    expires_in: int
