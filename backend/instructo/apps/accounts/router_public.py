# backend/instructo/apps/accounts/router_public.py

from __future__ import annotations

import os
import threading
import time

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from instructo.database import get_db
from instructo.errors import RateLimited
from instructo.schemas import Envelope, envelope
from instructo.security import get_bearer_token, get_current_user
from . import models, schemas, services

router = APIRouter(prefix="/auth", tags=["auth"])

_AUTH_RATE_LIMIT_WINDOW_SEC = int(os.getenv("AUTH_RATE_LIMIT_WINDOW_SEC", "300") or "300")
_AUTH_RATE_LIMIT_MAX_ATTEMPTS = int(os.getenv("AUTH_RATE_LIMIT_MAX_ATTEMPTS", "20") or "20")
_RATE_LIMIT_STATE: dict[tuple[str, str], list[float]] = {}
_RATE_LIMIT_LOCK = threading.Lock()


def _client_ip(request: Request) -> str:
    try:
        return request.client.host if request.client else "unknown"
    except Exception:
        return "unknown"


def _enforce_auth_rate_limit(request: Request, endpoint: str) -> None:
    """Fixed window per (client IP, endpoint); in-process only."""
    ip = _client_ip(request)
    now = time.monotonic()
    key = (ip, endpoint)
    with _RATE_LIMIT_LOCK:
        attempts = _RATE_LIMIT_STATE.get(key, [])
        cutoff = now - _AUTH_RATE_LIMIT_WINDOW_SEC
        attempts = [ts for ts in attempts if ts >= cutoff]
        if len(attempts) >= _AUTH_RATE_LIMIT_MAX_ATTEMPTS:
            retry_after = int(attempts[0] + _AUTH_RATE_LIMIT_WINDOW_SEC - now) + 1
            _RATE_LIMIT_STATE[key] = attempts
            raise RateLimited(retry_after_seconds=max(retry_after, 1))
        attempts.append(now)
        _RATE_LIMIT_STATE[key] = attempts


# ---------------------------------------------------------------------------
# LOGIN / OTP
# ---------------------------------------------------------------------------


@router.post(
    "/login",
    response_model=Envelope[schemas.AuthSession],
    summary="Login with email, password and role",
)
def login(
    payload: schemas.LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    _enforce_auth_rate_limit(request, "login")
    session = services.login(
        db,
        email=payload.email,
        password=payload.password,
        role=payload.role,
    )
    return envelope(session, "Login successful")


@router.post(
    "/send-otp",
    response_model=Envelope[schemas.OtpSent],
    summary="Email a one-time login code",
)
def send_otp(
    payload: schemas.SendOtpRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    _enforce_auth_rate_limit(request, "send-otp")
    services.send_otp(
        db,
        email=payload.email,
        role=payload.role,
        ip=_client_ip(request),
    )
    return envelope(
        schemas.OtpSent(email=payload.email, expires_in=services.OTP_EXPIRES_MINUTES * 60),
        "OTP sent to your email",
    )


@router.post(
    "/verify-otp",
    response_model=Envelope[schemas.AuthSession],
    summary="Exchange a one-time code for an access token",
)
def verify_otp(
    payload: schemas.VerifyOtpRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    _enforce_auth_rate_limit(request, "verify-otp")
    session = services.verify_otp(
        db,
        email=payload.email,
        otp=payload.otp,
        role=payload.role,
    )
    return envelope(session, "OTP verified successfully")


@router.post(
    "/refresh",
    response_model=Envelope[schemas.AuthSession],
    summary="Reissue a valid token with a fresh expiry",
)
def refresh_token(
    token: str | None = Depends(get_bearer_token),
    db: Session = Depends(get_db),
):
    session = services.refresh(db, token=token or "")
    return envelope(session, "Token refreshed")


@router.post(
    "/logout",
    response_model=Envelope,
    summary="Log out (the client discards its token)",
)
def logout(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    services.logout(db, user=current_user)
    return envelope(None, "Logged out successfully")


# ---------------------------------------------------------------------------
# PASSWORD RESET
# ---------------------------------------------------------------------------


@router.post(
    "/forgot-password",
    response_model=Envelope,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Request a password reset code",
)
def forgot_password(
    payload: schemas.ForgotPasswordRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    We do NOT reveal whether the account exists; the response is the same
    either way.
    """
    _enforce_auth_rate_limit(request, "forgot-password")
    services.forgot_password(
        db,
        email=payload.email,
        role=payload.role,
        ip=_client_ip(request),
    )
    return envelope(None, "If the account exists, a reset code has been sent.")


@router.post(
    "/reset-password",
    response_model=Envelope,
    summary="Set a new password using a reset code",
)
def reset_password(
    payload: schemas.ResetPasswordRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    _enforce_auth_rate_limit(request, "reset-password")
    services.reset_password(
        db,
        email=payload.email,
        role=payload.role,
        otp=payload.otp,
        new_password=payload.new_password,
    )
    return envelope(None, "Password has been reset successfully.")


# ---------------------------------------------------------------------------
# CURRENT USER
# ---------------------------------------------------------------------------


@router.get(
    "/me",
    response_model=Envelope[schemas.UserRead],
    summary="Get current logged-in user",
)
def read_current_user(
    current_user: models.User = Depends(get_current_user),
):
    return envelope(current_user)


@router.put(
    "/me",
    response_model=Envelope[schemas.UserRead],
    summary="Update own profile",
)
def update_current_user(
    payload: schemas.ProfileUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user = services.update_profile(db, user=current_user, data=payload)
    return envelope(user, "Profile updated successfully")


@router.put(
    "/change-password",
    response_model=Envelope,
    summary="Change own password",
)
def change_password(
    payload: schemas.ChangePasswordRequest,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    services.change_password(
        db,
        user=current_user,
        current_password=payload.current_password,
        new_password=payload.new_password,
    )
    return envelope(None, "Password changed successfully")
