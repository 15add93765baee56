# backend/instructo/errors.py
"""
Domain error taxonomy.

Services raise these; the handlers registered in `instructo.main` render
them as the standard `{success: false, message, errors?}` envelope with the
HTTP status carried by each class. Routers never translate them by hand.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import status

ErrorDetail = List[Dict[str, Any]]


class InstructoError(Exception):
    """Base class for every error that is safe to show to API clients."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "internal_error"
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        detail: Optional[ErrorDetail] = None,
    ) -> None:
        self.message = message or self.default_message
        self.detail = detail or []
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} code={self.code} message={self.message!r}>"


# ---------------------------------------------------------------------------
# 401
# ---------------------------------------------------------------------------


class Unauthenticated(InstructoError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "unauthenticated"
    default_message = "Authentication required"


class InvalidCredentials(Unauthenticated):
    code = "invalid_credentials"
    default_message = "Invalid email or password"


class TokenInvalid(Unauthenticated):
    code = "token_invalid"
    default_message = "Invalid token"


class TokenExpired(Unauthenticated):
    code = "token_expired"
    default_message = "Token expired"


# ---------------------------------------------------------------------------
# 403
# ---------------------------------------------------------------------------


class Forbidden(InstructoError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    default_message = "Access denied: Insufficient permissions"


# ---------------------------------------------------------------------------
# 400
# ---------------------------------------------------------------------------


class ValidationError(InstructoError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"
    default_message = "Validation error"


class OtpMismatch(ValidationError):
    code = "otp_mismatch"
    default_message = "Invalid OTP"


class OtpExpired(ValidationError):
    code = "otp_expired"
    default_message = "OTP has expired"


class FileTooLarge(ValidationError):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    code = "file_too_large"
    default_message = "Upload exceeds maximum file size."


# ---------------------------------------------------------------------------
# 404
# ---------------------------------------------------------------------------


class NotFound(InstructoError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "Not found"


class UnknownAccount(NotFound):
    code = "unknown_account"
    default_message = "User not found"


class UnknownRecipient(NotFound):
    code = "unknown_recipient"
    default_message = "Notification recipient not found"


# ---------------------------------------------------------------------------
# 409
# ---------------------------------------------------------------------------


class Conflict(InstructoError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"
    default_message = "Conflict"


class InvalidTransition(Conflict):
    code = "invalid_transition"
    default_message = "Illegal status change"


class ProjectLocked(Conflict):
    code = "project_locked"
    default_message = "Project is completed and can no longer be changed"


class TraineeNotActive(Conflict):
    code = "trainee_not_active"
    default_message = "Trainee not found or not approved"


# ---------------------------------------------------------------------------
# 429
# ---------------------------------------------------------------------------


class RateLimited(InstructoError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "rate_limited"
    default_message = "Too many attempts. Please try again later."

    def __init__(self, message: Optional[str] = None, *, retry_after_seconds: Optional[int] = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


# ---------------------------------------------------------------------------
# 502
# ---------------------------------------------------------------------------


class DeliveryFailed(InstructoError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "delivery_failed"
    default_message = "Could not deliver the message. Please try again."