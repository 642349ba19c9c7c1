# ctms/services/visit_schedule.py
"""
Protocol visit scheduling.

At enrollment every visit definition is materialized as a SubjectVisit with
expected_date = enrollment_date + expected_offset_days:

- Rollover (0) and Enrollment (1) are Completed on the enrollment date.
- Early Termination (99) only exists once the subject is Terminated.
- Terminated subjects keep no Scheduled visits beyond sequence 3, except
  visits that already carry a dispense (the ledger references them).
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from sqlalchemy.orm import Session

from ctms.models.accountability import AccountabilityRecord
from ctms.models.subject import Subject, SubjectStatus
from ctms.models.visit import (
    EARLY_TERMINATION_SEQUENCE,
    ENROLLMENT_SEQUENCES,
    LAST_SEQUENCE_BEFORE_TERMINATION_CUTOFF,
    SubjectVisit,
    SubjectVisitStatus,
    Visit,
)

logger = logging.getLogger(__name__)

# (name, sequence, offset_days, range_days)
DEFAULT_VISITS: list[tuple[str, int, int, int]] = [
    ("Rollover", 0, 0, 0),
    ("Enrollment (Visit 1)", 1, 0, 0),
    ("Visit 2", 2, 35, 7),
    ("Visit 3", 3, 90, 7),
    ("Visit 4", 4, 150, 7),
    ("Visit 5", 5, 210, 7),
    ("Early Termination", EARLY_TERMINATION_SEQUENCE, 0, 0),
]


class SubjectVisitNotFoundError(Exception):
    pass


def list_visit_definitions(db: Session) -> list[Visit]:
    return db.query(Visit).order_by(Visit.visit_sequence.asc()).all()


def expected_date_for(enrollment_date: date, visit: Visit) -> date:
    return enrollment_date + timedelta(days=visit.expected_offset_days or 0)


def is_in_window(subject_visit: SubjectVisit) -> bool | None:
    """
    True when the actual date is within +/- expected_range_days of the
    expected date. None when either date is unknown.
    """
    if subject_visit.actual_date is None or subject_visit.expected_date is None:
        return None
    tolerance = subject_visit.visit.expected_range_days or 0
    return abs((subject_visit.actual_date - subject_visit.expected_date).days) <= tolerance


def _is_schedulable(visit: Visit, subject: Subject) -> bool:
    if visit.visit_sequence == EARLY_TERMINATION_SEQUENCE:
        return subject.status == SubjectStatus.TERMINATED
    if subject.status == SubjectStatus.TERMINATED:
        return visit.visit_sequence <= LAST_SEQUENCE_BEFORE_TERMINATION_CUTOFF
    return True


def build_subject_visits(db: Session, subject: Subject) -> list[SubjectVisit]:
    """
    Create the subject's visit rows. Caller owns the commit.
    Subject must already be flushed (has an id).
    """
    created: list[SubjectVisit] = []
    for visit in list_visit_definitions(db):
        if not _is_schedulable(visit, subject):
            continue

        subject_visit = SubjectVisit(
            subject_id=subject.id,
            visit_id=visit.id,
            expected_date=expected_date_for(subject.enrollment_date, visit),
            status=SubjectVisitStatus.SCHEDULED,
        )
        if visit.visit_sequence in ENROLLMENT_SEQUENCES:
            subject_visit.status = SubjectVisitStatus.COMPLETED
            subject_visit.actual_date = subject.enrollment_date
        elif visit.visit_sequence == EARLY_TERMINATION_SEQUENCE:
            subject_visit.status = SubjectVisitStatus.COMPLETED
            subject_visit.expected_date = subject.termination_date
            subject_visit.actual_date = subject.termination_date

        db.add(subject_visit)
        created.append(subject_visit)

    db.flush()
    logger.info("Scheduled %s visits for subject %s", len(created), subject.subject_number)
    return created


def get_subject_visits(db: Session, subject_id: int) -> list[SubjectVisit]:
    return (
        db.query(SubjectVisit)
        .join(Visit, SubjectVisit.visit_id == Visit.id)
        .filter(SubjectVisit.subject_id == subject_id)
        .order_by(Visit.visit_sequence.asc())
        .all()
    )


def get_subject_visit(db: Session, subject_visit_id: int) -> SubjectVisit:
    subject_visit = db.query(SubjectVisit).filter(SubjectVisit.id == subject_visit_id).first()
    if not subject_visit:
        raise SubjectVisitNotFoundError("Subject visit not found")
    return subject_visit


def next_scheduled_visit(db: Session, subject_id: int) -> SubjectVisit | None:
    return (
        db.query(SubjectVisit)
        .join(Visit, SubjectVisit.visit_id == Visit.id)
        .filter(
            SubjectVisit.subject_id == subject_id,
            SubjectVisit.status == SubjectVisitStatus.SCHEDULED,
        )
        .order_by(Visit.visit_sequence.asc())
        .first()
    )


def apply_termination(db: Session, subject: Subject) -> SubjectVisit | None:
    """
    Remove still-Scheduled visits past the cutoff and record the
    Early Termination visit on the termination date. Visits referenced by
    an accountability record are kept.
    """
    dispensed_at = {
        visit_id
        for (visit_id,) in db.query(AccountabilityRecord.subject_visit_id).filter(
            AccountabilityRecord.subject_id == subject.id
        )
    }
    removed = kept = 0
    early_termination: SubjectVisit | None = None
    for subject_visit in get_subject_visits(db, subject.id):
        sequence = subject_visit.visit.visit_sequence
        if sequence == EARLY_TERMINATION_SEQUENCE:
            early_termination = subject_visit
            continue
        if (
            sequence > LAST_SEQUENCE_BEFORE_TERMINATION_CUTOFF
            and subject_visit.status == SubjectVisitStatus.SCHEDULED
        ):
            if subject_visit.id in dispensed_at:
                kept += 1
                continue
            db.delete(subject_visit)
            removed += 1

    if early_termination is None:
        visit = db.query(Visit).filter(Visit.visit_sequence == EARLY_TERMINATION_SEQUENCE).first()
        if visit is not None:
            early_termination = SubjectVisit(subject_id=subject.id, visit_id=visit.id)
            db.add(early_termination)

    if early_termination is not None:
        early_termination.expected_date = subject.termination_date
        early_termination.actual_date = subject.termination_date
        early_termination.status = SubjectVisitStatus.COMPLETED

    db.flush()
    logger.info(
        "Applied termination for subject %s: removed %s scheduled visits, kept %s with dispenses",
        subject.subject_number,
        removed,
        kept,
    )
    return early_termination


def record_visit(subject_visit: SubjectVisit, actual_date: date) -> SubjectVisit:
    subject_visit.actual_date = actual_date
    subject_visit.status = SubjectVisitStatus.COMPLETED
    return subject_visit
