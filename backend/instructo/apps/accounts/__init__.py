# backend/instructo/apps/accounts/__init__.py
"""
Accounts app

Responsible for:
- Admin and instructor accounts (single users table, role tag)
- One-time codes for OTP login and password reset
- Public auth endpoints (login, OTP, refresh, logout, password reset, /me)
- Admin management of admin and instructor accounts
"""

from . import models  # noqa: F401

__all__ = ["models"]
