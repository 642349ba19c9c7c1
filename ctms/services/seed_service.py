# ctms/services/seed_service.py
"""
Reference and demo data.

ensure_* helpers are idempotent and safe on every deploy. seed_demo_data()
drives the real services (enroll, shipment, dispense, return) so demo
rows carry the same derived values and audit entries as production ones.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.orm import Session

from ctms.core.security import get_password_hash
from ctms.models.accountability import ReturnStatus
from ctms.models.drug_unit import DrugUnit, DrugUnitStatus
from ctms.models.site import Site
from ctms.models.subject import Sex, Subject, SubjectStatus
from ctms.models.user import RoleName, User
from ctms.models.visit import SubjectVisit, Visit
from ctms.services import accountability_service, drug_unit_service
from ctms.services.accountability_service import ReturnInput
from ctms.services.subject_service import enroll_subject, update_subject
from ctms.services.visit_schedule import DEFAULT_VISITS, get_subject_visits, record_visit

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "Demo@12345"

DEMO_SITES = [
    ("1384", "Memorial Hospital", "Dr. Smith", "USA"),
    ("1385", "City Medical Center", "Dr. Johnson", "USA"),
    ("1386", "University Hospital", "Dr. Williams", "Canada"),
]

# (username, role, site_number)
DEMO_USERS = [
    ("admin", RoleName.ADMIN, None),
    ("coordinator1384", RoleName.COORDINATOR, "1384"),
    ("doctor1384", RoleName.DOCTOR, "1384"),
    ("monitor1384", RoleName.MONITOR, "1384"),
    ("auditor", RoleName.AUDITOR, "1384"),
    ("coordinator1385", RoleName.COORDINATOR, "1385"),
]

# (subject_number, site_number, dob, sex, enrollment_date, final_status, termination_date)
DEMO_SUBJECTS = [
    ("1384-001", "1384", date(1985, 3, 15), Sex.MALE, date(2024, 10, 1), SubjectStatus.ACTIVE, None),
    ("1384-002", "1384", date(1992, 7, 22), Sex.FEMALE, date(2024, 10, 5), SubjectStatus.ACTIVE, None),
    ("1384-005", "1384", date(1978, 11, 30), Sex.MALE, date(2024, 10, 15), SubjectStatus.ACTIVE, None),
    ("1384-006", "1384", date(1988, 5, 12), Sex.FEMALE, date(2024, 6, 1), SubjectStatus.COMPLETED, None),
    ("1384-009", "1384", date(1965, 4, 20), Sex.MALE, date(2024, 8, 15), SubjectStatus.TERMINATED, date(2024, 11, 20)),
    ("1385-001", "1385", date(1987, 6, 20), Sex.MALE, date(2024, 10, 10), SubjectStatus.ACTIVE, None),
    ("1385-002", "1385", date(1993, 9, 12), Sex.FEMALE, date(2024, 10, 20), SubjectStatus.ACTIVE, None),
]

# (site_number, drug_code, lot_number, expiration_date, count)
DEMO_SHIPMENTS = [
    ("1384", "DRUG-A", "LOT-12345", date(2027, 12, 31), 8),
    ("1384", "DRUG-B", "LOT-67890", date(2027, 6, 30), 4),
    ("1385", "DRUG-A", "LOT-12345", date(2027, 12, 31), 4),
]


def ensure_default_visits(db: Session) -> list[Visit]:
    visits: list[Visit] = []
    for name, sequence, offset, tolerance in DEFAULT_VISITS:
        visit = db.query(Visit).filter(Visit.visit_sequence == sequence).first()
        if not visit:
            visit = Visit(
                visit_name=name,
                visit_sequence=sequence,
                expected_offset_days=offset,
                expected_range_days=tolerance,
            )
            db.add(visit)
        visits.append(visit)
    db.flush()
    return visits


def ensure_site(db: Session, *, site_number: str, site_name: str, pi_name: str | None, country: str | None) -> Site:
    site = db.query(Site).filter(Site.site_number == site_number).first()
    if site:
        return site
    site = Site(site_number=site_number, site_name=site_name, pi_name=pi_name, country=country)
    db.add(site)
    db.flush()
    return site


def ensure_user(
    db: Session,
    *,
    username: str,
    password: str,
    role: RoleName,
    site_id: int | None,
    email: str | None = None,
) -> User:
    """
    Create or refresh a login-ready user. Password is rotated on every call.
    """
    user = db.query(User).filter(User.username == username).first()
    hashed = get_password_hash(password)
    if user:
        user.password_hash = hashed
        user.role = role
        user.site_id = site_id
        user.is_active = True
        if email:
            user.email = email
    else:
        user = User(
            username=username,
            password_hash=hashed,
            email=email,
            role=role,
            site_id=site_id,
            is_active=True,
        )
        db.add(user)
    db.flush()
    return user


def seed_demo_data(db: Session) -> dict[str, int]:
    """
    Populate a demo trial. Skips subjects that already exist.
    Caller owns the commit.
    """
    ensure_default_visits(db)

    sites = {
        number: ensure_site(db, site_number=number, site_name=name, pi_name=pi, country=country)
        for number, name, pi, country in DEMO_SITES
    }

    users = {
        username: ensure_user(
            db,
            username=username,
            password=DEMO_PASSWORD,
            role=role,
            site_id=sites[site_number].id if site_number else None,
            email=f"{username}@ctms.local",
        )
        for username, role, site_number in DEMO_USERS
    }
    admin = users["admin"]

    counts = {"subjects": 0, "drug_units": 0, "dispensed": 0, "returned": 0}

    for number, site_number, dob, sex, enrolled, final_status, terminated in DEMO_SUBJECTS:
        if db.query(Subject).filter(Subject.subject_number == number).first():
            continue
        subject = enroll_subject(
            db,
            actor=admin,
            subject_number=number,
            site_id=sites[site_number].id,
            dob=dob,
            sex=sex,
            consent_date=enrolled,
            enrollment_date=enrolled,
        )
        counts["subjects"] += 1
        if final_status != SubjectStatus.ACTIVE:
            update_subject(
                db,
                actor=admin,
                subject=subject,
                status=final_status,
                termination_date=terminated,
                reason="Demo data",
            )

    if not db.query(DrugUnit).first():
        for site_number, drug_code, lot, expires, count in DEMO_SHIPMENTS:
            units = drug_unit_service.register_shipment(
                db,
                actor=admin,
                site_id=sites[site_number].id,
                drug_code=drug_code,
                lot_number=lot,
                expiration_date=expires,
                quantity_per_unit=30,
                unit_description="Bottle of 30 tablets",
                count=count,
            )
            counts["drug_units"] += len(units)

        counts.update(_seed_accountability(db, admin))

    db.flush()
    logger.info("Demo data seeded: %s", counts)
    return counts


def _seed_accountability(db: Session, actor: User) -> dict[str, int]:
    """
    Dispense at Enrollment for 1384-001 / 1384-002 and record Visit 2 returns.
    """
    dispensed = returned = 0
    # (subject_number, qty_returned, days_on_drug)
    plan = [("1384-001", 5, 30), ("1384-002", 0, 30)]

    for subject_number, qty_returned, days in plan:
        subject = db.query(Subject).filter(Subject.subject_number == subject_number).first()
        if not subject:
            continue
        visits = get_subject_visits(db, subject.id)
        enrollment_visit = next(v for v in visits if v.visit.visit_sequence == 1)
        unit = (
            db.query(DrugUnit)
            .filter(
                DrugUnit.site_id == subject.site_id,
                DrugUnit.status == DrugUnitStatus.AVAILABLE,
            )
            .order_by(DrugUnit.id.asc())
            .first()
        )
        if not unit:
            continue

        first_dose = subject.enrollment_date
        record, _ = accountability_service.dispense(
            db,
            actor=actor,
            subject_id=subject.id,
            subject_visit_id=enrollment_visit.id,
            drug_unit_id=unit.id,
            pills_per_day=1,
            date_of_first_dose=first_dose,
            dispense_date=first_dose,
        )
        dispensed += 1

        last_dose = date.fromordinal(first_dose.toordinal() + days - 1)
        visit_2: SubjectVisit | None = next((v for v in visits if v.visit.visit_sequence == 2), None)
        if visit_2 is not None:
            record_visit(visit_2, visit_2.expected_date)
        accountability_service.record_return(
            db,
            actor=actor,
            data=ReturnInput(
                accountability_id=record.id,
                qty_returned=qty_returned,
                return_date=visit_2.expected_date if visit_2 else last_dose,
                return_status=ReturnStatus.RETURNED,
                date_of_last_dose=last_dose,
            ),
        )
        returned += 1

    return {"dispensed": dispensed, "returned": returned}
