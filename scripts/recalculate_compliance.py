#!/usr/bin/env python3
# scripts/recalculate_compliance.py
"""
Re-derive days used, expected pills, pills used and compliance % for every
returned accountability record using the shared calculator.

Run:
  python -m scripts.recalculate_compliance --dry-run
  python -m scripts.recalculate_compliance
"""
from __future__ import annotations

import argparse
import logging

from ctms.core.config import get_settings
from ctms.core.database import session_scope
from ctms.services.accountability_service import recalculate_all

logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="Recalculate stored compliance values")
    parser.add_argument("--dry-run", action="store_true", help="Report changes without writing them")
    args = parser.parse_args()

    logging.basicConfig(level=get_settings().log_level.upper())

    try:
        with session_scope() as db:
            summary = recalculate_all(db, dry_run=args.dry_run)
    except Exception:
        logger.exception("Compliance recalculation failed")
        raise

    mode = "Would update" if args.dry_run else "Updated"
    print(f"Processed {summary.processed} record(s)")
    print(f"{mode} {summary.changed} record(s): {summary.changed_ids}")
    print(f"Not computable (missing dose dates): {summary.not_computable}")


if __name__ == "__main__":
    main()
