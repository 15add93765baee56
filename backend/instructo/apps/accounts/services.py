# backend/instructo/apps/accounts/services.py

from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from instructo.apps.audit import services as audit_services
from instructo.apps.events import outbox
from instructo.apps.notifications import service as notification_service
from instructo.errors import (
    Conflict,
    DeliveryFailed,
    InvalidCredentials,
    NotFound,
    OtpExpired,
    OtpMismatch,
    TokenInvalid,
    UnknownAccount,
    ValidationError,
)
from instructo.security import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    create_access_token,
    decode_access_token,
    get_password_hash,
    password_needs_rehash,
    verify_password,
)
from instructo.utils.identifiers import generate_numeric_code

from . import models, schemas

logger = logging.getLogger(__name__)

OTP_LENGTH = int(os.getenv("OTP_LENGTH", "6"))
OTP_EXPIRES_MINUTES = int(os.getenv("OTP_EXPIRES_MINUTES", "10"))
OTP_MAX_ATTEMPTS = int(os.getenv("OTP_MAX_ATTEMPTS", "5"))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Normalisation / lookups
# ---------------------------------------------------------------------------


def _normalise_email(value: str) -> str:
    return value.strip().lower()


def get_user_by_email(db: Session, *, email: str) -> Optional[models.User]:
    return (
        db.query(models.User)
        .filter(models.User.email == _normalise_email(email))
        .first()
    )


def get_active_user_for_role(
    db: Session,
    *,
    email: str,
    role: models.Role,
) -> Optional[models.User]:
    """The email/role pair identifies an account; inactive accounts never match."""
    return (
        db.query(models.User)
        .filter(
            models.User.email == _normalise_email(email),
            models.User.role == models.Role(role),
            models.User.is_active.is_(True),
        )
        .first()
    )


# ---------------------------------------------------------------------------
# Token issuance
# ---------------------------------------------------------------------------


def issue_session(
    db: Session,
    user: models.User,
    *,
    method: str,
    now: Optional[datetime] = None,
) -> schemas.AuthSession:
    """
    Mint an access token for `user` and record the issuance.

    `method` is one of password / otp / refresh. Commits.
    """
    now = now or _utcnow()
    token = create_access_token(user_id=user.id, role=user.role, now=now)
    if method in {"password", "otp"}:
        user.last_login_at = now
        db.add(user)

    audit_services.log_event(
        db,
        actor_user_id=user.id,
        actor_role=user.role.value,
        entity_type="session",
        entity_id=user.id,
        action="token_issued",
        metadata={"method": method},
    )
    db.commit()
    db.refresh(user)

    logger.info(
        "Issued access token for user %s via %s",
        user.id,
        method,
        extra={"user_id": user.id, "role": user.role.value, "method": method},
    )
    return schemas.AuthSession(
        token=token,
        expires_in=int(ACCESS_TOKEN_EXPIRE_MINUTES * 60),
        user=schemas.UserRead.model_validate(user),
        role=user.role,
    )


def authenticate_user(
    db: Session,
    *,
    email: str,
    password: str,
    role: models.Role,
) -> models.User:
    """
    Password check for the email/role pair.

    Unknown account, wrong role and wrong password all raise the same
    InvalidCredentials so the response never reveals which part was wrong.
    """
    user = get_active_user_for_role(db, email=email, role=role)
    if user is None or not verify_password(password, user.hashed_password):
        logger.info("Failed login attempt", extra={"role": models.Role(role).value})
        raise InvalidCredentials()

    # Legacy bcrypt hashes are upgraded on the first successful login.
    if password_needs_rehash(user.hashed_password):
        user.hashed_password = get_password_hash(password)
        db.add(user)
    return user


def login(
    db: Session,
    *,
    email: str,
    password: str,
    role: models.Role,
    now: Optional[datetime] = None,
) -> schemas.AuthSession:
    user = authenticate_user(db, email=email, password=password, role=role)
    return issue_session(db, user, method="password", now=now)


def refresh(
    db: Session,
    *,
    token: str,
    now: Optional[datetime] = None,
) -> schemas.AuthSession:
    """Reissue a still-valid token with a fresh expiry."""
    ctx = decode_access_token(token, now=now)
    user = db.get(models.User, ctx.user_id)
    if user is None or not user.is_active or user.role != ctx.role:
        raise TokenInvalid()
    return issue_session(db, user, method="refresh", now=now)


def logout(db: Session, *, user: models.User) -> None:
    """
    Tokens are stateless, so logging out is the client dropping its token.
    The server only records that it happened.
    """
    audit_services.log_event(
        db,
        actor_user_id=user.id,
        actor_role=user.role.value,
        entity_type="session",
        entity_id=user.id,
        action="logout",
    )
    db.commit()


# ---------------------------------------------------------------------------
# One-time codes
# ---------------------------------------------------------------------------

_OTP_SUBJECTS = {
    models.OneTimeCodePurpose.LOGIN: ("otp_login", "Your Instructo login code"),
    models.OneTimeCodePurpose.PASSWORD_RESET: (
        "otp_password_reset",
        "Your Instructo password reset code",
    ),
}


def issue_one_time_code(
    db: Session,
    user: models.User,
    *,
    purpose: models.OneTimeCodePurpose,
    ip: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.OneTimeCode:
    """
    Create a fresh code, supersede the user's open codes of the same purpose
    and email it. Delivery is critical: if the email cannot be sent the new
    code is burned and DeliveryFailed is raised.
    """
    now = now or _utcnow()
    raw_code = generate_numeric_code(OTP_LENGTH)

    db.execute(
        update(models.OneTimeCode)
        .where(
            models.OneTimeCode.user_id == user.id,
            models.OneTimeCode.purpose == purpose,
            models.OneTimeCode.consumed_at.is_(None),
        )
        .values(consumed_at=now)
        .execution_options(synchronize_session=False)
    )

    code = models.OneTimeCode(
        user_id=user.id,
        purpose=purpose,
        code_hash=get_password_hash(raw_code),
        expires_at=now + timedelta(minutes=OTP_EXPIRES_MINUTES),
        attempt_count=0,
        request_ip=ip,
        created_at=now,
    )
    db.add(code)
    db.flush()

    template_key, subject = _OTP_SUBJECTS[purpose]
    try:
        notification_service.send_email(
            template_key,
            user.email,
            subject,
            {"otp": raw_code, "expires_minutes": OTP_EXPIRES_MINUTES, "name": user.name},
            correlation_id=f"otp:{code.id}",
            critical=True,
            db=db,
        )
    except Exception:
        code.consumed_at = now
        db.add(code)
        db.commit()
        logger.warning("OTP delivery failed", extra={"user_id": user.id, "purpose": purpose.value})
        raise DeliveryFailed()

    db.commit()
    db.refresh(code)
    return code


def send_otp(
    db: Session,
    *,
    email: str,
    role: models.Role,
    ip: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.OneTimeCode:
    user = get_active_user_for_role(db, email=email, role=role)
    if user is None:
        raise UnknownAccount()
    return issue_one_time_code(
        db,
        user,
        purpose=models.OneTimeCodePurpose.LOGIN,
        ip=ip,
        now=now,
    )


def _redeem_one_time_code(
    db: Session,
    *,
    email: str,
    role: models.Role,
    raw_code: str,
    purpose: models.OneTimeCodePurpose,
    now: datetime,
) -> models.User:
    user = get_active_user_for_role(db, email=email, role=role)
    if user is None:
        raise OtpMismatch()

    code = (
        db.query(models.OneTimeCode)
        .filter(
            models.OneTimeCode.user_id == user.id,
            models.OneTimeCode.purpose == purpose,
            models.OneTimeCode.consumed_at.is_(None),
        )
        .order_by(models.OneTimeCode.created_at.desc(), models.OneTimeCode.id.desc())
        .first()
    )
    if code is None:
        raise OtpMismatch()

    if _as_aware(code.expires_at) <= now:
        code.consumed_at = now
        db.add(code)
        db.commit()
        raise OtpExpired()

    if not verify_password((raw_code or "").strip(), code.code_hash):
        code.attempt_count = (code.attempt_count or 0) + 1
        if code.attempt_count >= OTP_MAX_ATTEMPTS:
            code.consumed_at = now
        db.add(code)
        db.commit()
        raise OtpMismatch()

    # Conditional consume: of two concurrent redemptions only one matches.
    result = db.execute(
        update(models.OneTimeCode)
        .where(
            models.OneTimeCode.id == code.id,
            models.OneTimeCode.consumed_at.is_(None),
        )
        .values(consumed_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise OtpMismatch("OTP has already been used")
    return user


def verify_otp(
    db: Session,
    *,
    email: str,
    otp: str,
    role: models.Role,
    now: Optional[datetime] = None,
) -> schemas.AuthSession:
    now = now or _utcnow()
    user = _redeem_one_time_code(
        db,
        email=email,
        role=role,
        raw_code=otp,
        purpose=models.OneTimeCodePurpose.LOGIN,
        now=now,
    )
    return issue_session(db, user, method="otp", now=now)


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def forgot_password(
    db: Session,
    *,
    email: str,
    role: models.Role,
    ip: Optional[str] = None,
    now: Optional[datetime] = None,
) -> None:
    """Send a reset code if the account exists. Never reveals whether it does."""
    user = get_active_user_for_role(db, email=email, role=role)
    if user is None:
        logger.info("Password reset requested for unknown account")
        return
    issue_one_time_code(
        db,
        user,
        purpose=models.OneTimeCodePurpose.PASSWORD_RESET,
        ip=ip,
        now=now,
    )


def reset_password(
    db: Session,
    *,
    email: str,
    role: models.Role,
    otp: str,
    new_password: str,
    now: Optional[datetime] = None,
) -> models.User:
    now = now or _utcnow()
    user = _redeem_one_time_code(
        db,
        email=email,
        role=role,
        raw_code=otp,
        purpose=models.OneTimeCodePurpose.PASSWORD_RESET,
        now=now,
    )
    user.hashed_password = get_password_hash(new_password)
    db.add(user)
    audit_services.log_event(
        db,
        actor_user_id=user.id,
        actor_role=user.role.value,
        entity_type="user",
        entity_id=user.id,
        action="password_reset",
    )
    db.commit()
    db.refresh(user)
    return user


def change_password(
    db: Session,
    *,
    user: models.User,
    current_password: str,
    new_password: str,
) -> models.User:
    if not verify_password(current_password, user.hashed_password):
        raise ValidationError(
            "Current password is incorrect",
            detail=[{"field": "current_password", "reason": "does not match"}],
        )
    user.hashed_password = get_password_hash(new_password)
    db.add(user)
    audit_services.log_event(
        db,
        actor_user_id=user.id,
        actor_role=user.role.value,
        entity_type="user",
        entity_id=user.id,
        action="password_changed",
    )
    db.commit()
    db.refresh(user)
    return user


def _clean_name(changes: dict) -> None:
    """Strip an incoming `name`; it may be changed but never cleared."""
    if "name" not in changes:
        return
    name = (changes["name"] or "").strip()
    if not name:
        raise ValidationError(
            "name cannot be cleared",
            detail=[{"field": "name", "reason": "required"}],
        )
    changes["name"] = name


def update_profile(
    db: Session,
    *,
    user: models.User,
    data: schemas.ProfileUpdate,
) -> models.User:
    changes = data.model_dump(exclude_unset=True)
    _clean_name(changes)
    for field, value in changes.items():
        setattr(user, field, value)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


# ---------------------------------------------------------------------------
# Admin management of staff accounts
# ---------------------------------------------------------------------------


def list_users(
    db: Session,
    *,
    role: models.Role,
    include_inactive: bool = False,
    search: Optional[str] = None,
) -> List[models.User]:
    qs = db.query(models.User).filter(models.User.role == role)
    if not include_inactive:
        qs = qs.filter(models.User.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        qs = qs.filter(
            or_(
                models.User.name.ilike(like),
                models.User.email.ilike(like),
                models.User.department.ilike(like),
            )
        )
    return qs.order_by(models.User.created_at.desc()).all()


def get_user(db: Session, *, role: models.Role, user_id: str) -> models.User:
    user = db.get(models.User, user_id)
    if user is None or user.role != role:
        raise NotFound(f"{role.value.capitalize()} not found")
    return user


def _ensure_email_free(db: Session, email: str, *, exclude_id: Optional[str] = None) -> str:
    email = _normalise_email(email)
    qs = db.query(models.User).filter(models.User.email == email)
    if exclude_id:
        qs = qs.filter(models.User.id != exclude_id)
    if qs.first() is not None:
        raise Conflict(
            "Email already exists",
            detail=[{"field": "email", "reason": "already registered"}],
        )
    return email


def create_user(
    db: Session,
    *,
    role: models.Role,
    data: schemas.AdminCreate | schemas.InstructorCreate,
    created_by: Optional[models.User],
) -> models.User:
    email = _ensure_email_free(db, data.email)
    fields = data.model_dump(exclude={"email", "password"})
    user = models.User(
        email=email,
        role=role,
        hashed_password=get_password_hash(data.password),
        is_active=True,
        created_by_id=created_by.id if created_by else None,
        **{k: v for k, v in fields.items() if hasattr(models.User, k)},
    )
    user.name = user.name.strip()
    db.add(user)
    db.flush()

    outbox.emit(
        db,
        event_type=outbox.ACCOUNT_CREATED,
        aggregate_type="user",
        aggregate_id=user.id,
        payload={"user_id": user.id, "name": user.name, "email": user.email, "role": role.value},
        actor_user_id=created_by.id if created_by else None,
    )
    audit_services.log_event(
        db,
        actor_user_id=created_by.id if created_by else None,
        actor_role=created_by.role.value if created_by else None,
        entity_type="user",
        entity_id=user.id,
        action="created",
        after={"email": user.email, "role": role.value},
    )
    db.commit()
    db.refresh(user)
    logger.info("Created %s account %s", role.value, user.id)
    return user


def _check_can_deactivate(db: Session, user: models.User, actor: models.User) -> None:
    if user.id == actor.id:
        raise Conflict("You cannot deactivate your own account")
    if user.role == models.Role.INSTRUCTOR:
        from instructo.apps.trainees import models as trainee_models

        owned = (
            db.query(trainee_models.Trainee)
            .filter(
                trainee_models.Trainee.instructor_id == user.id,
                trainee_models.Trainee.archived_at.is_(None),
            )
            .count()
        )
        if owned:
            raise Conflict(
                "Instructor still owns trainees; reassign them first",
                detail=[{"field": "trainees", "reason": f"{owned} trainee(s) still assigned"}],
            )


def update_user(
    db: Session,
    *,
    role: models.Role,
    user_id: str,
    data: schemas.AdminUpdate | schemas.InstructorUpdate,
    actor: models.User,
) -> models.User:
    user = get_user(db, role=role, user_id=user_id)
    changes = data.model_dump(exclude_unset=True)
    _clean_name(changes)

    if changes.get("email"):
        user.email = _ensure_email_free(db, changes.pop("email"), exclude_id=user.id)
    changes.pop("email", None)

    password = changes.pop("password", None)
    if password:
        user.hashed_password = get_password_hash(password)

    is_active = changes.pop("is_active", None)
    if is_active is False and user.is_active:
        _check_can_deactivate(db, user, actor)
        user.is_active = False
        user.deactivated_at = _utcnow()
    elif is_active is True and not user.is_active:
        user.is_active = True
        user.deactivated_at = None

    for field, value in changes.items():
        setattr(user, field, value)

    db.add(user)
    audit_services.log_event(
        db,
        actor_user_id=actor.id,
        actor_role=actor.role.value,
        entity_type="user",
        entity_id=user.id,
        action="updated",
        metadata={"fields": sorted(data.model_dump(exclude_unset=True).keys())},
    )
    db.commit()
    db.refresh(user)
    return user


def deactivate_user(
    db: Session,
    *,
    role: models.Role,
    user_id: str,
    actor: models.User,
) -> models.User:
    """DELETE on staff accounts: soft, the row and its history stay."""
    user = get_user(db, role=role, user_id=user_id)
    if not user.is_active:
        return user
    _check_can_deactivate(db, user, actor)
    user.is_active = False
    user.deactivated_at = _utcnow()
    db.add(user)
    audit_services.log_event(
        db,
        actor_user_id=actor.id,
        actor_role=actor.role.value,
        entity_type="user",
        entity_id=user.id,
        action="deactivated",
    )
    db.commit()
    db.refresh(user)
    logger.info("Deactivated %s account %s", role.value, user.id)
    return user
