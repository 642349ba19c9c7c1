from datetime import date

import pytest

from ctms.models.audit_log import AuditAction, AuditLogEntry
from ctms.models.drug_unit import DrugUnitStatus
from ctms.services import drug_unit_service
from ctms.services.drug_unit_service import (
    InvalidTransitionError,
    SignatureVerificationError,
    can_transition,
    transition,
)

from tests.helpers import PASSWORD

S = DrugUnitStatus


@pytest.mark.parametrize(
    "current, target",
    [
        (S.AVAILABLE, S.DISPENSED),
        (S.DISPENSED, S.RETURNED),
        (S.DISPENSED, S.MISSING),
        (S.RETURNED, S.DESTROYED),
    ],
)
def test_allowed_transitions(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize(
    "current, target",
    [
        (S.AVAILABLE, S.RETURNED),
        (S.AVAILABLE, S.DESTROYED),
        (S.DISPENSED, S.AVAILABLE),
        (S.RETURNED, S.DISPENSED),
        (S.DESTROYED, S.AVAILABLE),
        (S.MISSING, S.RETURNED),
    ],
)
def test_rejected_transitions(current, target):
    assert not can_transition(current, target)


def test_transition_leaves_unit_untouched_on_failure(units):
    unit = units[0]
    with pytest.raises(InvalidTransitionError):
        transition(unit, S.DESTROYED)
    assert unit.status == S.AVAILABLE


def test_register_shipment_audits_each_unit(db, units):
    assert all(u.status == S.AVAILABLE and u.subject_id is None for u in units)
    entries = db.query(AuditLogEntry).filter(AuditLogEntry.table_name == "drug_units").all()
    assert {e.record_id for e in entries} == {str(u.id) for u in units}
    assert all(e.action == AuditAction.CREATE for e in entries)


def test_update_status_refuses_destroy(db, admin, units):
    with pytest.raises(SignatureVerificationError):
        drug_unit_service.update_status(db, actor=admin, unit=units[0], target=S.DESTROYED)


def test_destroy_requires_matching_signature(db, admin, coordinator, units):
    unit = units[0]
    unit.status = S.RETURNED
    db.commit()

    with pytest.raises(SignatureVerificationError):
        drug_unit_service.destroy_units(
            db,
            actor=admin,
            unit_ids=[unit.id],
            username="admin",
            password="wrong",
            signature_meaning="Destroyed",
        )
    with pytest.raises(SignatureVerificationError):
        drug_unit_service.destroy_units(
            db,
            actor=admin,
            unit_ids=[unit.id],
            username=coordinator.username,
            password=PASSWORD,
            signature_meaning="Destroyed",
        )
    assert unit.status == S.RETURNED


def test_destroy_checks_every_unit_first(db, admin, units):
    returned, available = units[0], units[1]
    returned.status = S.RETURNED
    db.commit()

    with pytest.raises(InvalidTransitionError):
        drug_unit_service.destroy_units(
            db,
            actor=admin,
            unit_ids=[returned.id, available.id],
            username="admin",
            password=PASSWORD,
            signature_meaning="Destroyed",
        )
    assert returned.status == S.RETURNED


def test_destroy_records_signature(db, admin, units):
    unit = units[0]
    unit.status = S.RETURNED
    db.commit()

    drug_unit_service.destroy_units(
        db,
        actor=admin,
        unit_ids=[unit.id],
        username="admin",
        password=PASSWORD,
        signature_meaning="Destruction of investigational product",
        destruction_date=date(2024, 5, 1),
    )
    db.commit()

    assert unit.status == S.DESTROYED
    entry = db.query(AuditLogEntry).filter(AuditLogEntry.action == AuditAction.DESTROY).one()
    assert '"signed_by": "admin"' in entry.new_values
    assert '"destruction_date": "2024-05-01"' in entry.new_values


def test_bulk_override_keeps_subject_assignment_consistent(db, admin, site_a, subject, units):
    dispensed = units[0]
    drug_unit_service.mark_dispensed(dispensed, subject, date(2024, 1, 1))
    db.commit()

    updated, skipped = drug_unit_service.bulk_override_site(
        db, actor=admin, site_id=site_a.id, target=S.DISPENSED
    )
    # only the unit with a subject can be forced to Dispensed, and it already is
    assert updated == []
    assert len(skipped) == 2

    updated, skipped = drug_unit_service.bulk_override_site(
        db, actor=admin, site_id=site_a.id, target=S.AVAILABLE
    )
    db.commit()
    assert [u.id for u in updated] == [dispensed.id]
    assert dispensed.subject_id is None
    assert dispensed.assigned_date is None


def test_bulk_override_rejects_returned_target(db, admin, site_a, units):
    with pytest.raises(ValueError):
        drug_unit_service.bulk_override_site(db, actor=admin, site_id=site_a.id, target=S.RETURNED)


def test_destroy_counts_repeated_ids_once(db, admin, units):
    unit = units[0]
    unit.status = S.RETURNED
    db.commit()

    destroyed = drug_unit_service.destroy_units(
        db,
        actor=admin,
        unit_ids=[unit.id, unit.id],
        username="admin",
        password=PASSWORD,
        signature_meaning="Destroyed",
    )
    db.commit()

    assert [u.id for u in destroyed] == [unit.id]
    assert unit.status == S.DESTROYED
    assert db.query(AuditLogEntry).filter(AuditLogEntry.action == AuditAction.DESTROY).count() == 1


def test_update_status_refuses_dispense(db, admin, units):
    with pytest.raises(ValueError):
        drug_unit_service.update_status(db, actor=admin, unit=units[0], target=S.DISPENSED)
    assert units[0].status == S.AVAILABLE
