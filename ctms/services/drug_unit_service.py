# ctms/services/drug_unit_service.py
from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.orm import Session

from ctms.core.security import verify_password
from ctms.models.accountability import AccountabilityRecord
from ctms.models.audit_log import AuditAction
from ctms.models.drug_unit import DrugUnit, DrugUnitStatus
from ctms.models.subject import Subject
from ctms.models.user import User
from ctms.services.audit_service import record_audit, snapshot
from ctms.utils.datetime_utils import utc_today

logger = logging.getLogger(__name__)

# Legal per-unit moves. Destroyed and Missing are terminal.
ALLOWED_TRANSITIONS: dict[DrugUnitStatus, frozenset[DrugUnitStatus]] = {
    DrugUnitStatus.AVAILABLE: frozenset({DrugUnitStatus.DISPENSED}),
    DrugUnitStatus.DISPENSED: frozenset({DrugUnitStatus.RETURNED, DrugUnitStatus.MISSING}),
    DrugUnitStatus.RETURNED: frozenset({DrugUnitStatus.DESTROYED}),
    DrugUnitStatus.DESTROYED: frozenset(),
    DrugUnitStatus.MISSING: frozenset(),
}

# Targets an administrator may force with the bulk override
OVERRIDE_TARGETS = frozenset(
    {
        DrugUnitStatus.AVAILABLE,
        DrugUnitStatus.DISPENSED,
        DrugUnitStatus.DESTROYED,
        DrugUnitStatus.MISSING,
    }
)

AUDIT_FIELDS = ("status", "subject_id", "assigned_date", "site_id")


class DrugUnitNotFoundError(Exception):
    pass


class InvalidTransitionError(Exception):
    def __init__(self, current: DrugUnitStatus, target: DrugUnitStatus):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move drug unit from {current.value} to {target.value}")


class SignatureVerificationError(Exception):
    pass


class AccountabilityRequiredError(Exception):
    pass


def can_transition(current: DrugUnitStatus, target: DrugUnitStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def transition(unit: DrugUnit, target: DrugUnitStatus) -> DrugUnitStatus:
    """
    Move unit to target via the transition table. Returns the previous status.
    """
    current = unit.status
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)
    unit.status = target
    return current


def get_drug_unit(db: Session, unit_id: int, *, for_update: bool = False) -> DrugUnit:
    query = db.query(DrugUnit).filter(DrugUnit.id == unit_id)
    if for_update:
        query = query.with_for_update().populate_existing()
    unit = query.first()
    if not unit:
        raise DrugUnitNotFoundError("Drug unit not found")
    return unit


def list_drug_units(
    db: Session,
    *,
    site_id: int | None = None,
    status: DrugUnitStatus | None = None,
    drug_code: str | None = None,
) -> list[DrugUnit]:
    query = db.query(DrugUnit)
    if site_id is not None:
        query = query.filter(DrugUnit.site_id == site_id)
    if status is not None:
        query = query.filter(DrugUnit.status == status)
    if drug_code:
        query = query.filter(DrugUnit.drug_code == drug_code)
    return query.order_by(DrugUnit.id.asc()).all()


def register_shipment(
    db: Session,
    *,
    actor: User,
    site_id: int,
    drug_code: str,
    lot_number: str,
    expiration_date: date | None,
    quantity_per_unit: int,
    unit_description: str | None,
    count: int,
) -> list[DrugUnit]:
    """
    Receive `count` new Available units at a site.
    """
    units = [
        DrugUnit(
            drug_code=drug_code,
            lot_number=lot_number,
            expiration_date=expiration_date,
            quantity_per_unit=quantity_per_unit,
            unit_description=unit_description,
            status=DrugUnitStatus.AVAILABLE,
            site_id=site_id,
        )
        for _ in range(count)
    ]
    db.add_all(units)
    db.flush()

    for unit in units:
        record_audit(
            db,
            actor=actor,
            action=AuditAction.CREATE,
            table_name="drug_units",
            record_id=unit.id,
            new_values=snapshot(unit, AUDIT_FIELDS + ("drug_code", "lot_number", "quantity_per_unit")),
            reason="Shipment received",
        )
    logger.info(
        "Registered shipment site_id=%s drug_code=%s lot=%s units=%s",
        site_id,
        drug_code,
        lot_number,
        count,
    )
    return units


def mark_dispensed(unit: DrugUnit, subject: Subject, assigned_date: date | None = None) -> None:
    transition(unit, DrugUnitStatus.DISPENSED)
    unit.subject_id = subject.id
    unit.assigned_date = assigned_date or utc_today()


def mark_returned(unit: DrugUnit, *, lost: bool = False) -> None:
    transition(unit, DrugUnitStatus.MISSING if lost else DrugUnitStatus.RETURNED)


def has_open_accountability(db: Session, unit_id: int) -> bool:
    """True when a dispense of this unit still awaits its return."""
    return (
        db.query(AccountabilityRecord.id)
        .filter(
            AccountabilityRecord.drug_unit_id == unit_id,
            AccountabilityRecord.qty_returned.is_(None),
        )
        .first()
        is not None
    )


def update_status(
    db: Session,
    *,
    actor: User,
    unit: DrugUnit,
    target: DrugUnitStatus,
    reason: str | None = None,
) -> DrugUnit:
    """
    Per-unit status change through the transition table.

    Dispensing and returns go through the accountability workflow, and
    destruction requires a signature (destroy_units). This only covers
    units that have no dispense awaiting its return.
    """
    if target == DrugUnitStatus.DESTROYED:
        raise SignatureVerificationError("Destruction requires an electronic signature")
    if target == DrugUnitStatus.DISPENSED:
        raise ValueError("Drug units are dispensed through POST /accountability")
    if has_open_accountability(db, unit.id):
        raise AccountabilityRequiredError(
            "Drug unit has an open dispense; record the return through "
            "PUT /accountability/{id}/return"
        )

    old = snapshot(unit, AUDIT_FIELDS)
    transition(unit, target)

    record_audit(
        db,
        actor=actor,
        action=AuditAction.UPDATE,
        table_name="drug_units",
        record_id=unit.id,
        old_values=old,
        new_values=snapshot(unit, AUDIT_FIELDS),
        reason=reason,
    )
    return unit


def verify_signature(db: Session, *, username: str, password: str) -> User:
    """
    Electronic signature: re-entered credentials of an active user.
    """
    signer = db.query(User).filter(User.username == username).first()
    if not signer or not signer.is_active or not verify_password(password, signer.password_hash):
        raise SignatureVerificationError("Electronic signature could not be verified")
    return signer


def destroy_units(
    db: Session,
    *,
    actor: User,
    unit_ids: list[int],
    username: str,
    password: str,
    signature_meaning: str,
    destruction_date: date | None = None,
    reason: str | None = None,
) -> list[DrugUnit]:
    """
    Returned -> Destroyed for each unit, after the signature is verified.
    All units are checked before any is changed. Repeated ids count once.
    """
    unit_ids = list(dict.fromkeys(unit_ids))
    signer = verify_signature(db, username=username, password=password)
    if signer.id != actor.id:
        raise SignatureVerificationError("Signature must belong to the signed-in user")

    units = [get_drug_unit(db, unit_id, for_update=True) for unit_id in unit_ids]
    for unit in units:
        if not can_transition(unit.status, DrugUnitStatus.DESTROYED):
            raise InvalidTransitionError(unit.status, DrugUnitStatus.DESTROYED)

    when = destruction_date or utc_today()
    for unit in units:
        old = snapshot(unit, AUDIT_FIELDS)
        transition(unit, DrugUnitStatus.DESTROYED)
        record_audit(
            db,
            actor=actor,
            action=AuditAction.DESTROY,
            table_name="drug_units",
            record_id=unit.id,
            old_values=old,
            new_values={
                **snapshot(unit, AUDIT_FIELDS),
                "destruction_date": when,
                "signed_by": signer.username,
                "signature_meaning": signature_meaning,
            },
            reason=reason,
        )

    logger.info("Destroyed drug units ids=%s signed_by=%s", unit_ids, signer.username)
    return units


def bulk_override_site(
    db: Session,
    *,
    actor: User,
    site_id: int,
    target: DrugUnitStatus,
    reason: str | None = None,
) -> tuple[list[DrugUnit], list[DrugUnit]]:
    """
    Administrative escape hatch: force every unit at a site to target,
    bypassing the transition table. Returns (updated, skipped).

    Subject assignment invariant still holds: Available clears the subject,
    and units with no subject are skipped when forcing Dispensed.
    """
    if target not in OVERRIDE_TARGETS:
        raise ValueError(f"Status {target.value} is not a valid override target")

    units = (
        db.query(DrugUnit)
        .filter(DrugUnit.site_id == site_id)
        .order_by(DrugUnit.id.asc())
        .with_for_update()
        .all()
    )

    updated: list[DrugUnit] = []
    skipped: list[DrugUnit] = []
    for unit in units:
        if target == DrugUnitStatus.DISPENSED and unit.subject_id is None:
            skipped.append(unit)
            continue
        if unit.status == target:
            continue

        old = snapshot(unit, AUDIT_FIELDS)
        unit.status = target
        if target == DrugUnitStatus.AVAILABLE:
            unit.subject_id = None
            unit.assigned_date = None

        record_audit(
            db,
            actor=actor,
            action=AuditAction.UPDATE,
            table_name="drug_units",
            record_id=unit.id,
            old_values=old,
            new_values={**snapshot(unit, AUDIT_FIELDS), "override": True, "review_required": True},
            reason=reason or "Bulk status override",
        )
        updated.append(unit)

    logger.warning(
        "Bulk status override site_id=%s target=%s updated=%s skipped=%s by=%s (review required)",
        site_id,
        target.value,
        len(updated),
        len(skipped),
        actor.username,
    )
    return updated, skipped
