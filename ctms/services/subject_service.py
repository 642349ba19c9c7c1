# ctms/services/subject_service.py
from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.orm import Session, joinedload

from ctms.models.audit_log import AuditAction
from ctms.models.site import Site
from ctms.models.subject import SUBJECT_STATUS_TRANSITIONS, Sex, Subject, SubjectStatus
from ctms.models.user import User
from ctms.services.audit_service import record_audit, snapshot
from ctms.services.visit_schedule import apply_termination, build_subject_visits
from ctms.utils.datetime_utils import utc_today

logger = logging.getLogger(__name__)

AUDIT_FIELDS = ("subject_number", "site_id", "dob", "sex", "status", "consent_date", "enrollment_date", "termination_date")


class SubjectNotFoundError(Exception):
    pass


class SiteNotFoundError(Exception):
    pass


class DuplicateSubjectError(Exception):
    pass


class InvalidStatusTransitionError(Exception):
    pass


def list_subjects(
    db: Session,
    *,
    site_id: int | None = None,
    status: SubjectStatus | None = None,
) -> list[Subject]:
    query = db.query(Subject).options(joinedload(Subject.site))
    if site_id is not None:
        query = query.filter(Subject.site_id == site_id)
    if status is not None:
        query = query.filter(Subject.status == status)
    return query.order_by(Subject.created_at.desc(), Subject.id.desc()).all()


def get_subject(db: Session, subject_id: int) -> Subject:
    subject = (
        db.query(Subject)
        .options(joinedload(Subject.site))
        .filter(Subject.id == subject_id)
        .first()
    )
    if not subject:
        raise SubjectNotFoundError("Subject not found")
    return subject


def enroll_subject(
    db: Session,
    *,
    actor: User,
    subject_number: str,
    site_id: int | None,
    dob: date,
    sex: Sex,
    consent_date: date,
    enrollment_date: date | None = None,
) -> Subject:
    """
    Create an Active subject and schedule its protocol visits.
    Site defaults to the enrolling user's site. Caller owns the commit.
    """
    subject_number = subject_number.strip()
    if not subject_number:
        raise ValueError("Subject number is required")

    site_id = site_id if site_id is not None else actor.site_id
    if site_id is None:
        raise ValueError("A site is required to enroll a subject")
    if not db.query(Site).filter(Site.id == site_id).first():
        raise SiteNotFoundError("Site not found")

    if db.query(Subject).filter(Subject.subject_number == subject_number).first():
        raise DuplicateSubjectError(f"Subject number {subject_number} already exists")

    enrollment_date = enrollment_date or utc_today()
    if consent_date > enrollment_date:
        raise ValueError("Consent date cannot be after the enrollment date")
    if dob > enrollment_date:
        raise ValueError("Date of birth cannot be after the enrollment date")

    subject = Subject(
        subject_number=subject_number,
        site_id=site_id,
        dob=dob,
        sex=sex,
        status=SubjectStatus.ACTIVE,
        consent_date=consent_date,
        enrollment_date=enrollment_date,
    )
    db.add(subject)
    db.flush()

    build_subject_visits(db, subject)

    record_audit(
        db,
        actor=actor,
        action=AuditAction.CREATE,
        table_name="subjects",
        record_id=subject.id,
        new_values=snapshot(subject, AUDIT_FIELDS),
    )
    logger.info("Enrolled subject %s at site_id=%s", subject.subject_number, site_id)
    return subject


def update_subject(
    db: Session,
    *,
    actor: User,
    subject: Subject,
    dob: date | None = None,
    sex: Sex | None = None,
    status: SubjectStatus | None = None,
    termination_date: date | None = None,
    reason: str | None = None,
) -> Subject:
    """
    Update demographics and status. Status only moves forward
    (Active -> Completed | Terminated). Caller owns the commit.
    """
    old = snapshot(subject, AUDIT_FIELDS)

    if dob is not None:
        subject.dob = dob
    if sex is not None:
        subject.sex = sex

    terminating = False
    if status is not None and status != subject.status:
        if status not in SUBJECT_STATUS_TRANSITIONS[subject.status]:
            raise InvalidStatusTransitionError(
                f"Subject status cannot change from {subject.status.value} to {status.value}"
            )
        subject.status = status
        terminating = status == SubjectStatus.TERMINATED

    if termination_date is not None:
        if subject.status != SubjectStatus.TERMINATED:
            raise ValueError("Termination date can only be set for a Terminated subject")
        subject.termination_date = termination_date
    elif terminating:
        subject.termination_date = utc_today()

    if subject.termination_date and subject.termination_date < subject.enrollment_date:
        raise ValueError("Termination date cannot be before the enrollment date")

    if subject.status == SubjectStatus.TERMINATED and (terminating or termination_date is not None):
        apply_termination(db, subject)

    new = snapshot(subject, AUDIT_FIELDS)
    if new != old:
        record_audit(
            db,
            actor=actor,
            action=AuditAction.UPDATE,
            table_name="subjects",
            record_id=subject.id,
            old_values=old,
            new_values=new,
            reason=reason,
        )
    if terminating:
        logger.info("Subject %s terminated on %s", subject.subject_number, subject.termination_date)
    return subject
