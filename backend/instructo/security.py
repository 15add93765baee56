# backend/instructo/security.py

"""
Security helpers for Instructo.

Responsibilities:
- Password / one-time-code hashing and verification
- JWT access token creation and decoding
- The authorization gate: `authorize(token, required_role)`
- FastAPI dependencies for the current user and role checks

Token verification is a pure function of the token, the signing key and the
clock; nothing here keeps per-user session state.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional, Set, Union

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError
import bcrypt

from .database import get_db
from .errors import Forbidden, TokenExpired, TokenInvalid, Unauthenticated
from instructo.apps.accounts import models as account_models
from instructo.apps.accounts.models import Role

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# CONFIG
# ---------------------------------------------------------------------------

# In production, ALWAYS override these via environment variables.
SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME_IN_PRODUCTION")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

try:
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(
        os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440")
    )
except ValueError:
    ACCESS_TOKEN_EXPIRE_MINUTES = 1440

# auto_error=False so a missing header is reported through our own
# Unauthenticated error (and envelope) instead of FastAPI's default 403.
bearer_scheme = HTTPBearer(auto_error=False)


# ---------------------------------------------------------------------------
# PASSWORD HASHING
# ---------------------------------------------------------------------------

_pwd_hasher = PasswordHasher(
    time_cost=int(os.getenv("ARGON2_TIME_COST", "3")),
    memory_cost=int(os.getenv("ARGON2_MEMORY_COST", "65536")),  # KiB (64MB)
    parallelism=int(os.getenv("ARGON2_PARALLELISM", "2")),
    hash_len=int(os.getenv("ARGON2_HASH_LEN", "32")),
    salt_len=int(os.getenv("ARGON2_SALT_LEN", "16")),
)


def _is_argon2_hash(hashed_password: str) -> bool:
    return isinstance(hashed_password, str) and hashed_password.startswith("$argon2")


def _is_bcrypt_hash(hashed_password: str) -> bool:
    return isinstance(hashed_password, str) and hashed_password.startswith(("$2a$", "$2b$", "$2y$"))


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Return True if the plain password matches the hash."""
    if not plain_password or not hashed_password:
        return False

    if _is_argon2_hash(hashed_password):
        try:
            return _pwd_hasher.verify(hashed_password, plain_password)
        except (VerifyMismatchError, VerificationError, InvalidHash):
            return False

    # Accounts imported from the previous system carry bcrypt hashes.
    if _is_bcrypt_hash(hashed_password):
        try:
            return bcrypt.checkpw(
                plain_password.encode("utf-8"),
                hashed_password.encode("utf-8"),
            )
        except ValueError:
            return False

    return False


def get_password_hash(password: str) -> str:
    """Hash a password (or one-time code) for storing in the database (Argon2id)."""
    return _pwd_hasher.hash(password)


def password_needs_rehash(hashed_password: str) -> bool:
    if not _is_argon2_hash(hashed_password):
        return True
    return _pwd_hasher.check_needs_rehash(hashed_password)


# ---------------------------------------------------------------------------
# JWT TOKENS
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UserContext:
    """What a verified token says about its bearer."""

    user_id: str
    role: Role
    issued_at: datetime
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_access_token(
    *,
    user_id: str,
    role: Union[Role, str],
    expires_delta: Optional[timedelta] = None,
    now: Optional[datetime] = None,
) -> str:
    """Create a signed JWT embedding user id, role, issue time and expiry."""
    issued_at = now or _utcnow()
    expire = issued_at + (
        expires_delta
        if expires_delta is not None
        else timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    claims = {
        "sub": str(user_id),
        "role": Role(role).value,
        "iat": int(issued_at.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(claims, SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str, *, now: Optional[datetime] = None) -> UserContext:
    """
    Verify signature and expiry and return the token's UserContext.

    Expiry is checked here against `now` (not by jose) so callers and tests
    can pin the clock. Raises TokenInvalid / TokenExpired.
    """
    if not token:
        raise TokenInvalid()
    try:
        payload = jwt.decode(
            token,
            SECRET_KEY,
            algorithms=[JWT_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        raise TokenInvalid()

    user_id = payload.get("sub")
    exp = payload.get("exp")
    iat = payload.get("iat")
    try:
        role = Role(payload.get("role"))
    except ValueError:
        raise TokenInvalid()
    if not user_id or not isinstance(exp, (int, float)):
        raise TokenInvalid()

    expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
    if (now or _utcnow()) >= expires_at:
        raise TokenExpired()

    issued_at = (
        datetime.fromtimestamp(iat, tz=timezone.utc)
        if isinstance(iat, (int, float))
        else expires_at
    )
    return UserContext(user_id=str(user_id), role=role, issued_at=issued_at, expires_at=expires_at)


# ---------------------------------------------------------------------------
# AUTHORIZATION GATE
# ---------------------------------------------------------------------------


def _normalise_roles(roles: Optional[Union[Role, str, Iterable[Union[Role, str]]]]) -> Set[Role]:
    if roles is None:
        return set()
    if isinstance(roles, (Role, str)):
        roles = [roles]
    normalised: Set[Role] = set()
    for r in roles:
        try:
            normalised.add(Role(r))
        except ValueError:
            raise ValueError(f"Unknown role {r!r}")
    return normalised


def authorize(
    token: Optional[str],
    required_role: Optional[Union[Role, str, Iterable[Union[Role, str]]]] = None,
    *,
    now: Optional[datetime] = None,
) -> UserContext:
    """
    Allow or deny an operation for the bearer of `token`.

    - Missing / malformed / badly signed token -> Unauthenticated (TokenInvalid)
    - Expired token                            -> Unauthenticated (TokenExpired)
    - Role not in `required_role`              -> Forbidden

    `required_role=None` means "any authenticated user".
    """
    if not token:
        raise Unauthenticated("Access token is required")
    ctx = decode_access_token(token, now=now)
    allowed = _normalise_roles(required_role)
    if allowed and ctx.role not in allowed:
        raise Forbidden()
    return ctx


# ---------------------------------------------------------------------------
# FASTAPI DEPENDENCIES
# ---------------------------------------------------------------------------


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    if credentials is None or (credentials.scheme or "").lower() != "bearer":
        return None
    return credentials.credentials


def get_user_by_id(db: Session, user_id: str) -> Optional[account_models.User]:
    if user_id is None:
        return None
    return (
        db.query(account_models.User)
        .filter(account_models.User.id == str(user_id).strip())
        .first()
    )


def _load_active_user(db: Session, ctx: UserContext) -> account_models.User:
    user = get_user_by_id(db, ctx.user_id)
    # A token minted for a different role than the account now has is stale.
    if user is None or user.role != ctx.role:
        raise TokenInvalid()
    if not user.is_active:
        raise Unauthenticated("Account is deactivated")
    return user


def get_current_user(
    token: Optional[str] = Depends(get_bearer_token),
    db: Session = Depends(get_db),
) -> account_models.User:
    """Resolve the bearer token to an active User (any role)."""
    ctx = authorize(token, None)
    return _load_active_user(db, ctx)


def require_roles(
    *allowed_roles: Union[Role, str],
) -> Callable[..., account_models.User]:
    """
    Dependency factory enforcing that the current user has one of the roles.

    Usage:
        @router.get(...)
        def endpoint(current_user: User = Depends(require_roles(Role.ADMIN))):
            ...
    """
    normalised = _normalise_roles(allowed_roles)

    def dependency(
        token: Optional[str] = Depends(get_bearer_token),
        db: Session = Depends(get_db),
    ) -> account_models.User:
        ctx = authorize(token, normalised)
        return _load_active_user(db, ctx)

    return dependency


require_admin = require_roles(Role.ADMIN)
require_instructor = require_roles(Role.INSTRUCTOR)
