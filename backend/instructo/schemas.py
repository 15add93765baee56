# backend/instructo/schemas.py

from __future__ import annotations

from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


# -------------------------------------------------------------------
# RESPONSE ENVELOPE
# -------------------------------------------------------------------


class Envelope(BaseModel, Generic[T]):
    """
    Shape of every JSON response the client consumes:

        {"success": true, "data": {...}, "message": "Trainee approved"}
        {"success": false, "message": "Trainee not found"}
    """

    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None


class ErrorEnvelope(BaseModel):
    success: bool = False
    message: str
    errors: List[Dict[str, Any]] = []


class Message(BaseModel):
    message: str


def envelope(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    """Build a success envelope; FastAPI validates it against response_model."""
    return {"success": True, "data": data, "message": message}
