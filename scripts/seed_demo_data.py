#!/usr/bin/env python3
# scripts/seed_demo_data.py
"""
CTMS demo data seeder + reset.

Seeds three sites, one login per role (password Demo@12345), subjects with
their visit schedules, two drug shipments and a few dispense/return
records. Everything goes through the service layer, so the audit trail and
compliance values look exactly like production data.

Reset removes demo subjects, their accountability history and every drug
unit at the demo sites. Users, sites, visits and the audit trail are kept.

Run:
  python -m scripts.seed_demo_data --seed
  python -m scripts.seed_demo_data --reset
  python -m scripts.seed_demo_data --reset --seed
"""
from __future__ import annotations

import argparse
import logging

from sqlalchemy.orm import Session

from ctms.core.config import get_settings
from ctms.core.database import session_scope
from ctms.models.accountability import AccountabilityRecord
from ctms.models.drug_unit import DrugUnit
from ctms.models.site import Site
from ctms.models.subject import Subject
from ctms.models.visit import SubjectVisit
from ctms.services.report_service import invalidate_site_enrollment
from ctms.services.seed_service import DEMO_PASSWORD, DEMO_SITES, DEMO_SUBJECTS, DEMO_USERS, seed_demo_data

logger = logging.getLogger(__name__)

RESET_ENVIRONMENTS = ("local", "development", "dev", "test")


def reset_demo_data(db: Session) -> dict[str, int]:
    site_ids = [
        s.id
        for s in db.query(Site).filter(Site.site_number.in_([number for number, *_ in DEMO_SITES])).all()
    ]
    subject_ids = [
        s.id
        for s in db.query(Subject).filter(Subject.subject_number.in_([number for number, *_ in DEMO_SUBJECTS])).all()
    ]

    unit_ids = [u.id for u in db.query(DrugUnit).filter(DrugUnit.site_id.in_(site_ids)).all()]

    counts = {}
    counts["accountability"] = (
        db.query(AccountabilityRecord)
        .filter(
            (AccountabilityRecord.subject_id.in_(subject_ids))
            | (AccountabilityRecord.drug_unit_id.in_(unit_ids))
        )
        .delete(synchronize_session=False)
    )
    counts["drug_units"] = (
        db.query(DrugUnit).filter(DrugUnit.id.in_(unit_ids)).delete(synchronize_session=False)
    )
    counts["subject_visits"] = (
        db.query(SubjectVisit)
        .filter(SubjectVisit.subject_id.in_(subject_ids))
        .delete(synchronize_session=False)
    )
    counts["subjects"] = (
        db.query(Subject).filter(Subject.id.in_(subject_ids)).delete(synchronize_session=False)
    )
    return counts


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed / reset CTMS demo data")
    parser.add_argument("--seed", action="store_true", help="Seed demo sites, users, subjects and drug units")
    parser.add_argument("--reset", action="store_true", help="Delete demo subjects and drug units")
    args = parser.parse_args()

    if not (args.seed or args.reset):
        parser.print_help()
        raise SystemExit(1)

    logging.basicConfig(level=get_settings().log_level.upper())

    if args.reset:
        env = get_settings().app_env.lower()
        if env not in RESET_ENVIRONMENTS:
            raise SystemExit(f"Refusing to reset demo data in APP_ENV={env}")
        with session_scope() as db:
            counts = reset_demo_data(db)
        invalidate_site_enrollment()
        print(f"Reset done: {counts}")

    if args.seed:
        with session_scope() as db:
            counts = seed_demo_data(db)
        invalidate_site_enrollment()
        print(f"Seeded: {counts}")
        print("Demo logins (password %s):" % DEMO_PASSWORD)
        for username, role, site_number in DEMO_USERS:
            print(f"  {username:<18} {role.value:<12} site={site_number or '-'}")


if __name__ == "__main__":
    main()
