# ctms/services/accountability_service.py
"""
Dispense / return / correction workflow for accountability records.

Every public mutation here follows the same order:

1. lock the drug unit row (SELECT ... FOR UPDATE where supported),
2. run the validator and stop on REJECTED,
3. compute compliance with ctms.services.compliance,
4. move the drug unit through the state machine,
5. add the audit entries to the same session.

Nothing is committed here. The caller commits once, so the record, the unit
status and the audit entries land together or not at all.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy.orm import Session, joinedload

from ctms.models.accountability import AccountabilityRecord, ReturnStatus
from ctms.models.audit_log import AuditAction
from ctms.models.drug_unit import DrugUnitStatus
from ctms.models.subject import Subject
from ctms.models.user import User
from ctms.models.visit import SubjectVisit
from ctms.services import drug_unit_service
from ctms.services.audit_service import record_audit, snapshot
from ctms.services.compliance import (
    ComplianceResult,
    ComplianceThresholds,
    apply_to_record,
    calculate_compliance,
    calculate_for_record,
)
from ctms.services.subject_service import SubjectNotFoundError
from ctms.services.validation import (
    ValidationResult,
    check_compliance,
    check_dose_dates,
    check_quantities,
    raise_if_rejected,
    validate_correction,
    validate_dispense,
    validate_return,
)
from ctms.services.visit_schedule import SubjectVisitNotFoundError
from ctms.utils.datetime_utils import utc_today

logger = logging.getLogger(__name__)

AUDIT_FIELDS = (
    "subject_id",
    "subject_visit_id",
    "drug_unit_id",
    "qty_dispensed",
    "qty_returned",
    "date_of_first_dose",
    "date_of_last_dose",
    "pills_per_day",
    "reconciliation_date",
    "return_date",
    "return_status",
    "days_used",
    "expected_pills",
    "pills_used",
    "compliance_percentage",
    "comments",
)


class AccountabilityNotFoundError(Exception):
    pass


@dataclass
class ReturnInput:
    """One return, as recorded by PUT /{id}/return or inside a bulk submit."""

    accountability_id: int
    qty_returned: int
    return_date: date | None = None
    return_status: ReturnStatus = ReturnStatus.RETURNED
    date_of_last_dose: date | None = None
    date_of_first_dose: date | None = None
    pills_per_day: int | None = None
    reconciliation_date: date | None = None
    comments: str | None = None


@dataclass
class RecalculationSummary:
    processed: int = 0
    changed: int = 0
    not_computable: int = 0
    changed_ids: list[int] = field(default_factory=list)


def _base_query(db: Session):
    return db.query(AccountabilityRecord).options(
        joinedload(AccountabilityRecord.subject),
        joinedload(AccountabilityRecord.drug_unit),
        joinedload(AccountabilityRecord.subject_visit).joinedload(SubjectVisit.visit),
    )


def list_records(
    db: Session,
    *,
    site_id: int | None = None,
    subject_id: int | None = None,
    visit_id: int | None = None,
) -> list[AccountabilityRecord]:
    query = _base_query(db)
    if site_id is not None:
        query = query.join(Subject, AccountabilityRecord.subject_id == Subject.id).filter(
            Subject.site_id == site_id
        )
    if subject_id is not None:
        query = query.filter(AccountabilityRecord.subject_id == subject_id)
    if visit_id is not None:
        query = query.join(
            SubjectVisit, AccountabilityRecord.subject_visit_id == SubjectVisit.id
        ).filter(SubjectVisit.visit_id == visit_id)
    return query.order_by(AccountabilityRecord.created_at.desc(), AccountabilityRecord.id.desc()).all()


def get_record(db: Session, accountability_id: int) -> AccountabilityRecord:
    record = _base_query(db).filter(AccountabilityRecord.id == accountability_id).first()
    if not record:
        raise AccountabilityNotFoundError("Accountability record not found")
    return record


def _prior_records(db: Session, subject_id: int, exclude_id: int | None = None) -> list[AccountabilityRecord]:
    query = db.query(AccountabilityRecord).filter(AccountabilityRecord.subject_id == subject_id)
    if exclude_id is not None:
        query = query.filter(AccountabilityRecord.id != exclude_id)
    return query.order_by(AccountabilityRecord.id.asc()).all()


def dispense(
    db: Session,
    *,
    actor: User,
    subject_id: int,
    subject_visit_id: int,
    drug_unit_id: int,
    qty_dispensed: int | None = None,
    pills_per_day: int | None = None,
    date_of_first_dose: date | None = None,
    dispense_date: date | None = None,
    comments: str | None = None,
) -> tuple[AccountabilityRecord, ValidationResult]:
    """
    Dispense an Available unit to an Active subject at a visit.
    qty_dispensed defaults to the unit's pill count.
    """
    unit = drug_unit_service.get_drug_unit(db, drug_unit_id, for_update=True)

    subject = db.query(Subject).filter(Subject.id == subject_id).first()
    if not subject:
        raise SubjectNotFoundError("Subject not found")
    subject_visit = db.query(SubjectVisit).filter(SubjectVisit.id == subject_visit_id).first()
    if not subject_visit:
        raise SubjectVisitNotFoundError("Subject visit not found")

    if qty_dispensed is None:
        qty_dispensed = unit.quantity_per_unit
    dispense_date = dispense_date or utc_today()

    result = validate_dispense(
        unit=unit,
        subject=subject,
        subject_visit=subject_visit,
        qty_dispensed=qty_dispensed,
        pills_per_day=pills_per_day,
        date_of_first_dose=date_of_first_dose,
        dispense_date=dispense_date,
        prior_records=_prior_records(db, subject.id),
    )
    raise_if_rejected(result, conflict=unit.status != DrugUnitStatus.AVAILABLE)

    unit_old = snapshot(unit, drug_unit_service.AUDIT_FIELDS)
    drug_unit_service.mark_dispensed(unit, subject, dispense_date)

    record = AccountabilityRecord(
        subject_id=subject.id,
        subject_visit_id=subject_visit.id,
        drug_unit_id=unit.id,
        qty_dispensed=qty_dispensed,
        date_of_first_dose=date_of_first_dose,
        pills_per_day=pills_per_day or 1,
        comments=comments,
        dispensed_by_id=actor.id,
    )
    db.add(record)
    db.flush()

    record_audit(
        db,
        actor=actor,
        action=AuditAction.DISPENSE,
        table_name="accountability",
        record_id=record.id,
        new_values=snapshot(record, AUDIT_FIELDS),
    )
    record_audit(
        db,
        actor=actor,
        action=AuditAction.UPDATE,
        table_name="drug_units",
        record_id=unit.id,
        old_values=unit_old,
        new_values=snapshot(unit, drug_unit_service.AUDIT_FIELDS),
        reason=f"Dispensed to subject {subject.subject_number}",
    )

    logger.info(
        "Dispensed drug unit %s (%s pills) to subject %s by %s",
        unit.id,
        qty_dispensed,
        subject.subject_number,
        actor.username,
    )
    return record, result


def preview_compliance(
    *,
    qty_dispensed: int,
    qty_returned: int,
    date_of_first_dose: date | None,
    date_of_last_dose: date | None,
    pills_per_day: int | None,
    thresholds: ComplianceThresholds | None = None,
) -> tuple[ComplianceResult | None, ValidationResult]:
    """
    Calculator preview with no persistence. Returns (None, rejected result)
    when the inputs could not be computed.
    """
    result = check_quantities(qty_dispensed, qty_returned, pills_per_day)
    result.merge(check_dose_dates(date_of_first_dose, date_of_last_dose))
    if result.is_rejected:
        return None, result

    compliance = calculate_compliance(
        qty_dispensed=qty_dispensed,
        qty_returned=qty_returned,
        date_of_first_dose=date_of_first_dose,
        date_of_last_dose=date_of_last_dose,
        pills_per_day=pills_per_day,
        thresholds=thresholds,
    )
    result.merge(check_compliance(compliance))
    return compliance, result


def _validate_return_input(record: AccountabilityRecord, data: ReturnInput) -> ValidationResult:
    first_dose = data.date_of_first_dose or record.date_of_first_dose
    return validate_return(
        record=record,
        qty_returned=data.qty_returned,
        return_date=data.return_date,
        date_of_first_dose=first_dose,
        date_of_last_dose=data.date_of_last_dose,
        pills_per_day=data.pills_per_day,
    )


def _apply_return(
    db: Session,
    *,
    actor: User,
    record: AccountabilityRecord,
    data: ReturnInput,
    thresholds: ComplianceThresholds,
) -> ValidationResult:
    old = snapshot(record, AUDIT_FIELDS)

    record.qty_returned = data.qty_returned
    record.return_date = data.return_date or utc_today()
    record.return_status = data.return_status
    record.date_of_last_dose = data.date_of_last_dose
    if data.date_of_first_dose is not None:
        record.date_of_first_dose = data.date_of_first_dose
    if data.pills_per_day is not None:
        record.pills_per_day = data.pills_per_day
    if data.reconciliation_date is not None:
        record.reconciliation_date = data.reconciliation_date
    if data.comments is not None:
        record.comments = data.comments

    compliance = calculate_for_record(record, thresholds)
    apply_to_record(record, compliance)
    warnings = check_compliance(compliance)

    unit = record.drug_unit
    unit_old = snapshot(unit, drug_unit_service.AUDIT_FIELDS)
    drug_unit_service.mark_returned(unit, lost=data.return_status == ReturnStatus.LOST)

    record_audit(
        db,
        actor=actor,
        action=AuditAction.RETURN,
        table_name="accountability",
        record_id=record.id,
        old_values=old,
        new_values=snapshot(record, AUDIT_FIELDS),
    )
    record_audit(
        db,
        actor=actor,
        action=AuditAction.UPDATE,
        table_name="drug_units",
        record_id=unit.id,
        old_values=unit_old,
        new_values=snapshot(unit, drug_unit_service.AUDIT_FIELDS),
        reason=f"Return recorded ({data.return_status.value})",
    )

    if compliance.flag is not None:
        logger.warning(
            "Compliance flagged %s for accountability %s: %s%%",
            compliance.flag.value,
            record.id,
            compliance.compliance_percentage,
        )
    logger.info(
        "Recorded return for accountability %s: %s of %s pills returned, unit %s -> %s",
        record.id,
        record.qty_returned,
        record.qty_dispensed,
        unit.id,
        unit.status.value,
    )
    return warnings


def record_return(
    db: Session,
    *,
    actor: User,
    data: ReturnInput,
    thresholds: ComplianceThresholds | None = None,
) -> tuple[AccountabilityRecord, ValidationResult]:
    thresholds = thresholds or ComplianceThresholds.from_settings()
    record = get_record(db, data.accountability_id)
    drug_unit_service.get_drug_unit(db, record.drug_unit_id, for_update=True)

    result = _validate_return_input(record, data)
    raise_if_rejected(result, conflict=record.is_returned)

    result.merge(_apply_return(db, actor=actor, record=record, data=data, thresholds=thresholds))
    return record, result


def bulk_submit(
    db: Session,
    *,
    actor: User,
    items: list[ReturnInput],
    thresholds: ComplianceThresholds | None = None,
) -> tuple[list[AccountabilityRecord], ValidationResult]:
    """
    Record a batch of returns. Every item is validated before any is
    applied; one rejection rejects the whole batch.
    """
    if not items:
        raise ValueError("Records array is required")
    thresholds = thresholds or ComplianceThresholds.from_settings()

    combined = ValidationResult()
    seen: set[int] = set()
    records: list[AccountabilityRecord] = []
    for index, item in enumerate(items, start=1):
        if item.accountability_id in seen:
            combined.reject(f"Record {index}: accountability {item.accountability_id} appears more than once")
            continue
        seen.add(item.accountability_id)

        record = get_record(db, item.accountability_id)
        drug_unit_service.get_drug_unit(db, record.drug_unit_id, for_update=True)
        item_result = _validate_return_input(record, item)
        combined.reasons.extend(f"Record {index}: {r}" for r in item_result.reasons)
        combined.warnings.extend(f"Record {index}: {w}" for w in item_result.warnings)
        records.append(record)

    raise_if_rejected(combined)

    for index, (record, item) in enumerate(zip(records, items), start=1):
        applied = _apply_return(db, actor=actor, record=record, data=item, thresholds=thresholds)
        combined.warnings.extend(f"Record {index}: {w}" for w in applied.warnings)

    logger.info("Bulk submit recorded %s returns by %s", len(records), actor.username)
    return records, combined


def correct_record(
    db: Session,
    *,
    actor: User,
    accountability_id: int,
    reason_for_change: str | None,
    date_of_first_dose: date | None = None,
    date_of_last_dose: date | None = None,
    pills_per_day: int | None = None,
    qty_returned: int | None = None,
    reconciliation_date: date | None = None,
    comments: str | None = None,
    thresholds: ComplianceThresholds | None = None,
) -> tuple[AccountabilityRecord, ValidationResult]:
    """
    Administrative correction. Requires a reason; derived fields are
    recomputed when a return exists.
    """
    thresholds = thresholds or ComplianceThresholds.from_settings()
    record = get_record(db, accountability_id)

    first_dose = date_of_first_dose if date_of_first_dose is not None else record.date_of_first_dose
    last_dose = date_of_last_dose if date_of_last_dose is not None else record.date_of_last_dose

    result = validate_correction(
        record=record,
        reason_for_change=reason_for_change,
        qty_returned=qty_returned,
        date_of_first_dose=first_dose,
        date_of_last_dose=last_dose,
        pills_per_day=pills_per_day,
    )
    raise_if_rejected(result)

    old = snapshot(record, AUDIT_FIELDS)
    record.date_of_first_dose = first_dose
    record.date_of_last_dose = last_dose
    if pills_per_day is not None:
        record.pills_per_day = pills_per_day
    if qty_returned is not None:
        record.qty_returned = qty_returned
    if reconciliation_date is not None:
        record.reconciliation_date = reconciliation_date
    if comments is not None:
        record.comments = comments

    if record.is_returned:
        compliance = calculate_for_record(record, thresholds)
        apply_to_record(record, compliance)
        result.merge(check_compliance(compliance))

    new = snapshot(record, AUDIT_FIELDS)
    record_audit(
        db,
        actor=actor,
        action=AuditAction.UPDATE,
        table_name="accountability",
        record_id=record.id,
        old_values=old,
        new_values=new,
        reason=reason_for_change,
    )
    logger.info("Corrected accountability %s by %s: %s", record.id, actor.username, reason_for_change)
    return record, result


def recalculate_all(
    db: Session,
    *,
    actor: User | None = None,
    thresholds: ComplianceThresholds | None = None,
    dry_run: bool = False,
) -> RecalculationSummary:
    """
    Re-derive stored compliance for every returned record.
    Idempotent: a second run changes nothing.
    """
    thresholds = thresholds or ComplianceThresholds.from_settings()
    summary = RecalculationSummary()

    records = (
        db.query(AccountabilityRecord)
        .filter(AccountabilityRecord.qty_returned.isnot(None))
        .order_by(AccountabilityRecord.id.asc())
        .all()
    )
    for record in records:
        summary.processed += 1
        compliance = calculate_for_record(record, thresholds)
        if not compliance.is_computable:
            summary.not_computable += 1

        old = snapshot(record, AUDIT_FIELDS)
        stored = {k: old[k] for k in compliance.stored_fields()}
        if stored == compliance.stored_fields():
            continue

        summary.changed += 1
        summary.changed_ids.append(record.id)
        if dry_run:
            continue

        apply_to_record(record, compliance)
        record_audit(
            db,
            actor=actor,
            action=AuditAction.UPDATE,
            table_name="accountability",
            record_id=record.id,
            old_values=old,
            new_values=snapshot(record, AUDIT_FIELDS),
            reason="Compliance recalculation",
        )

    logger.info(
        "Compliance recalculation processed=%s changed=%s not_computable=%s dry_run=%s",
        summary.processed,
        summary.changed,
        summary.not_computable,
        dry_run,
    )
    return summary
