#!/usr/bin/env python3
# scripts/setup_platform.py
"""
Platform setup. Safe to run many times (idempotent).

- Protocol visit templates are created if missing.
- The admin account is created or refreshed to be login-ready; the password
  is rotated to whatever is passed in.

Examples:
  python -m scripts.setup_platform --ensure-admin --username admin --password "Admin@12345"

  # credentials read from ADMIN_USERNAME / ADMIN_PASSWORD / ADMIN_EMAIL
  python -m scripts.setup_platform --ensure-admin
"""

from __future__ import annotations

import argparse
import logging
import sys

from sqlalchemy.orm import Session

from ctms.core.config import get_settings
from ctms.core.database import SessionLocal
from ctms.models.user import RoleName
from ctms.services.seed_service import ensure_default_visits, ensure_user

logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="CTMS platform setup")
    p.add_argument("--ensure-admin", action="store_true", help="Ensure the admin account exists")
    p.add_argument("--username", type=str, help="Admin username (or use env ADMIN_USERNAME)")
    p.add_argument("--password", type=str, help="Admin password (or use env ADMIN_PASSWORD)")
    p.add_argument("--email", type=str, help="Admin email (or use env ADMIN_EMAIL)")
    return p.parse_args()


def main() -> None:
    args = parse_args()

    if not args.ensure_admin:
        print("Nothing to do. Use --ensure-admin.")
        sys.exit(1)

    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    # CLI args take precedence, then settings (from .env)
    username = args.username or settings.admin_username
    password = args.password or settings.admin_password
    email = args.email or settings.admin_email

    if not username or not password:
        raise SystemExit(
            "Admin credentials missing.\n"
            "Provide --username/--password OR set env ADMIN_USERNAME and ADMIN_PASSWORD."
        )

    db: Session = SessionLocal()
    try:
        ensure_default_visits(db)
        user = ensure_user(
            db,
            username=username,
            password=password,
            role=RoleName.ADMIN,
            site_id=None,
            email=email,
        )
        db.commit()
        print(f"Admin ensured: {user.username}")
    except Exception:
        db.rollback()
        logger.exception("Platform setup failed")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
