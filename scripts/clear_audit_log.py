#!/usr/bin/env python3
# scripts/clear_audit_log.py
"""
Development-only purge of the audit trail.
The audit log is append-only everywhere else; this refuses to run unless
APP_ENV is local/development.

Run:
  python -m scripts.clear_audit_log --yes
"""
from __future__ import annotations

import argparse
import logging

from ctms.core.config import get_settings
from ctms.core.database import session_scope
from ctms.models.audit_log import AuditLogEntry

logger = logging.getLogger(__name__)

ALLOWED_ENVIRONMENTS = ("local", "development", "dev")


def main() -> None:
    parser = argparse.ArgumentParser(description="Delete every audit log entry (development only)")
    parser.add_argument("--yes", action="store_true", help="Confirm the purge")
    args = parser.parse_args()

    settings = get_settings()
    env = settings.app_env.lower()
    if env not in ALLOWED_ENVIRONMENTS:
        raise SystemExit(f"Refusing to clear the audit log in APP_ENV={env}")
    if not args.yes:
        raise SystemExit("Pass --yes to confirm deleting the entire audit log.")

    logging.basicConfig(level=settings.log_level.upper())

    with session_scope() as db:
        deleted = db.query(AuditLogEntry).delete(synchronize_session=False)

    logger.warning("Audit log cleared in APP_ENV=%s: %s entries deleted", env, deleted)
    print(f"Deleted {deleted} audit log entries")


if __name__ == "__main__":
    main()
