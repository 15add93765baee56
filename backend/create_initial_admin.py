#!/usr/bin/env python3
# backend/create_initial_admin.py
"""
Bootstrap the first admin account.

Admins are normally created by another admin through /admin/admins, so a
fresh database needs one account created out of band.
"""

import argparse
import os

from instructo.database import Base, SessionLocal, engine
from instructo.apps.accounts import models
from instructo.security import get_password_hash


def main() -> None:
    parser = argparse.ArgumentParser(description="Create the initial Instructo admin account.")
    parser.add_argument("--email", default=os.getenv("INITIAL_ADMIN_EMAIL", "admin@instructo.io"))
    parser.add_argument("--name", default="Instructo Admin")
    parser.add_argument(
        "--password",
        default=os.getenv("INITIAL_ADMIN_PASSWORD"),
        help="Plaintext password (or set INITIAL_ADMIN_PASSWORD).",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before inserting the admin.",
    )
    args = parser.parse_args()

    if not args.password:
        parser.error("--password or INITIAL_ADMIN_PASSWORD is required")

    if args.create_tables:
        Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        email = args.email.strip().lower()
        existing = db.query(models.User).filter(models.User.email == email).first()
        if existing:
            print(f"[INFO] User already exists: id={existing.id}, email={existing.email}")
            return

        user = models.User(
            email=email,
            name=args.name,
            role=models.Role.ADMIN,
            is_active=True,
            hashed_password=get_password_hash(args.password),
        )

        db.add(user)
        db.commit()
        db.refresh(user)

        print("[OK] Created admin user:")
        print(f"  id:      {user.id}")
        print(f"  email:   {user.email}")
        print(f"  role:    {user.role.value}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
