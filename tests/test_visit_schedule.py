from datetime import date

import pytest

from ctms.models.subject import Sex, SubjectStatus
from ctms.models.visit import SubjectVisitStatus
from ctms.services.subject_service import (
    DuplicateSubjectError,
    InvalidStatusTransitionError,
    enroll_subject,
    update_subject,
)
from ctms.services.visit_schedule import (
    get_subject_visits,
    is_in_window,
    next_scheduled_visit,
    record_visit,
)


def _by_sequence(db, subject):
    return {v.visit.visit_sequence: v for v in get_subject_visits(db, subject.id)}


def test_enrollment_schedules_protocol_visits(db, subject):
    visits = _by_sequence(db, subject)

    assert sorted(visits) == [0, 1, 2, 3, 4, 5]
    for sequence in (0, 1):
        assert visits[sequence].status == SubjectVisitStatus.COMPLETED
        assert visits[sequence].actual_date == date(2024, 1, 1)
    assert visits[2].expected_date == date(2024, 2, 5)
    assert visits[3].expected_date == date(2024, 3, 31)
    assert visits[2].status == SubjectVisitStatus.SCHEDULED


def test_next_scheduled_visit(db, subject):
    upcoming = next_scheduled_visit(db, subject.id)
    assert upcoming.visit.visit_sequence == 2

    record_visit(upcoming, date(2024, 2, 7))
    db.commit()
    assert next_scheduled_visit(db, subject.id).visit.visit_sequence == 3


def test_visit_window(db, subject):
    visit_2 = _by_sequence(db, subject)[2]
    assert is_in_window(visit_2) is None

    record_visit(visit_2, date(2024, 2, 12))
    assert is_in_window(visit_2) is True
    record_visit(visit_2, date(2024, 2, 13))
    assert is_in_window(visit_2) is False


def test_termination_prunes_later_visits(db, admin, subject):
    update_subject(
        db,
        actor=admin,
        subject=subject,
        status=SubjectStatus.TERMINATED,
        termination_date=date(2024, 3, 1),
        reason="Withdrew consent",
    )
    db.commit()

    visits = _by_sequence(db, subject)
    assert sorted(visits) == [0, 1, 2, 3, 99]
    assert visits[99].status == SubjectVisitStatus.COMPLETED
    assert visits[99].actual_date == date(2024, 3, 1)
    assert subject.termination_date == date(2024, 3, 1)


def test_completed_later_visits_survive_termination(db, admin, subject):
    visit_4 = _by_sequence(db, subject)[4]
    record_visit(visit_4, date(2024, 5, 30))
    db.commit()

    update_subject(db, actor=admin, subject=subject, status=SubjectStatus.TERMINATED)
    db.commit()

    assert 4 in _by_sequence(db, subject)
    assert 5 not in _by_sequence(db, subject)


def test_status_cannot_move_backwards(db, admin, subject):
    update_subject(db, actor=admin, subject=subject, status=SubjectStatus.COMPLETED)
    db.commit()
    with pytest.raises(InvalidStatusTransitionError):
        update_subject(db, actor=admin, subject=subject, status=SubjectStatus.ACTIVE)


def test_termination_date_needs_terminated_status(db, admin, subject):
    with pytest.raises(ValueError):
        update_subject(db, actor=admin, subject=subject, termination_date=date(2024, 3, 1))


def test_duplicate_subject_number(db, admin, site_a, subject):
    with pytest.raises(DuplicateSubjectError):
        enroll_subject(
            db,
            actor=admin,
            subject_number="1384-001",
            site_id=site_a.id,
            dob=date(1990, 1, 1),
            sex=Sex.MALE,
            consent_date=date(2024, 1, 1),
        )


def test_consent_after_enrollment_rejected(db, admin, site_a, visits):
    with pytest.raises(ValueError):
        enroll_subject(
            db,
            actor=admin,
            subject_number="1384-002",
            site_id=site_a.id,
            dob=date(1990, 1, 1),
            sex=Sex.MALE,
            consent_date=date(2024, 2, 1),
            enrollment_date=date(2024, 1, 1),
        )
