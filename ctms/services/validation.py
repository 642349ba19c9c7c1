# ctms/services/validation.py
"""
Business-rule validation for accountability and drug-unit mutations.

Every mutating operation runs one of the validators below before touching
state. A result is one of:

- OK:        no findings.
- WARNING:   the mutation proceeds; messages are returned to the client.
- REJECTED:  the mutation must not happen; reasons are returned with a 4xx.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Iterable

from ctms.models.accountability import AccountabilityRecord
from ctms.models.drug_unit import DrugUnit, DrugUnitStatus
from ctms.models.subject import Subject, SubjectStatus
from ctms.models.visit import SubjectVisit
from ctms.services.compliance import ComplianceResult


class ValidationOutcome(str, Enum):
    OK = "OK"
    WARNING = "WARNING"
    REJECTED = "REJECTED"


@dataclass
class ValidationResult:
    warnings: list[str] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)

    @property
    def outcome(self) -> ValidationOutcome:
        if self.reasons:
            return ValidationOutcome.REJECTED
        if self.warnings:
            return ValidationOutcome.WARNING
        return ValidationOutcome.OK

    @property
    def is_rejected(self) -> bool:
        return self.outcome == ValidationOutcome.REJECTED

    def warn(self, message: str) -> "ValidationResult":
        self.warnings.append(message)
        return self

    def reject(self, reason: str) -> "ValidationResult":
        self.reasons.append(reason)
        return self

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        self.warnings.extend(other.warnings)
        self.reasons.extend(other.reasons)
        return self

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls()


class ValidationFailedError(Exception):
    """Raised by services when a validator rejects a mutation."""

    def __init__(self, result: ValidationResult, *, conflict: bool = False):
        self.result = result
        self.conflict = conflict
        super().__init__("; ".join(result.reasons))


def raise_if_rejected(result: ValidationResult, *, conflict: bool = False) -> ValidationResult:
    if result.is_rejected:
        raise ValidationFailedError(result, conflict=conflict)
    return result


def check_quantities(
    qty_dispensed: int | None,
    qty_returned: int | None,
    pills_per_day: int | None = None,
) -> ValidationResult:
    result = ValidationResult()
    if qty_dispensed is not None and qty_dispensed < 0:
        result.reject("Quantity dispensed cannot be negative")
    if qty_returned is not None and qty_returned < 0:
        result.reject("Quantity returned cannot be negative")
    if (
        qty_dispensed is not None
        and qty_returned is not None
        and qty_returned > qty_dispensed
    ):
        result.reject(
            f"Quantity returned ({qty_returned}) cannot exceed quantity dispensed ({qty_dispensed})"
        )
    if pills_per_day is not None and pills_per_day < 1:
        result.reject("Pills per day must be at least 1")
    return result


def check_dose_dates(first_dose: date | None, last_dose: date | None) -> ValidationResult:
    result = ValidationResult()
    if first_dose and last_dose and last_dose < first_dose:
        result.reject("Last dose date cannot be before first dose date")
    return result


def check_compliance(compliance: ComplianceResult) -> ValidationResult:
    result = ValidationResult()
    if not compliance.is_computable:
        result.warn("Compliance not computable: first and last dose dates are required")
        return result
    message = compliance.warning_message()
    if message:
        result.warn(message)
    return result


def check_first_dose_overlap(
    first_dose: date | None,
    prior_records: Iterable[AccountabilityRecord],
) -> ValidationResult:
    """
    Warn when a new first dose overlaps an earlier dispense of the same subject
    that is still unreturned or whose last dose is on/after the new first dose.
    """
    result = ValidationResult()
    if first_dose is None:
        return result
    for prior in prior_records:
        if prior.qty_returned is None:
            result.warn(
                f"Subject still has an unreturned dispense (drug unit {prior.drug_unit_id}); "
                "first dose may overlap the prior supply"
            )
        elif prior.date_of_last_dose and prior.date_of_last_dose >= first_dose:
            result.warn(
                f"First dose {first_dose.isoformat()} overlaps prior dosing that ended "
                f"{prior.date_of_last_dose.isoformat()} (drug unit {prior.drug_unit_id})"
            )
    return result


def validate_dispense(
    *,
    unit: DrugUnit,
    subject: Subject,
    subject_visit: SubjectVisit,
    qty_dispensed: int,
    pills_per_day: int | None,
    date_of_first_dose: date | None,
    dispense_date: date,
    prior_records: Iterable[AccountabilityRecord] = (),
) -> ValidationResult:
    result = ValidationResult()

    if unit.status != DrugUnitStatus.AVAILABLE:
        result.reject(f"Drug unit {unit.id} is {unit.status.value}, only Available units can be dispensed")
    if unit.expiration_date and unit.expiration_date < dispense_date:
        result.reject(f"Drug unit {unit.id} expired on {unit.expiration_date.isoformat()}")
    if subject.status != SubjectStatus.ACTIVE:
        result.reject(f"Subject {subject.subject_number} is {subject.status.value}, not Active")
    if unit.site_id != subject.site_id:
        result.reject("Drug unit and subject belong to different sites")
    if subject_visit.subject_id != subject.id:
        result.reject("Subject visit does not belong to this subject")
    if qty_dispensed > unit.quantity_per_unit:
        result.reject(
            f"Quantity dispensed ({qty_dispensed}) exceeds the unit's pill count ({unit.quantity_per_unit})"
        )

    result.merge(check_quantities(qty_dispensed, None, pills_per_day))
    result.merge(check_first_dose_overlap(date_of_first_dose, prior_records))
    return result


def validate_return(
    *,
    record: AccountabilityRecord,
    qty_returned: int,
    return_date: date | None,
    date_of_first_dose: date | None,
    date_of_last_dose: date | None,
    pills_per_day: int | None,
) -> ValidationResult:
    result = ValidationResult()

    if record.is_returned:
        result.reject("A return has already been recorded for this record; use a correction instead")

    result.merge(check_quantities(record.qty_dispensed, qty_returned, pills_per_day))
    result.merge(check_dose_dates(date_of_first_dose, date_of_last_dose))

    if return_date and date_of_first_dose and return_date < date_of_first_dose:
        result.warn("Return date cannot be before first dose date")
    if return_date and date_of_last_dose and date_of_last_dose > return_date:
        result.warn("Last dose date is after the return date")
    return result


def validate_correction(
    *,
    record: AccountabilityRecord,
    reason_for_change: str | None,
    qty_returned: int | None,
    date_of_first_dose: date | None,
    date_of_last_dose: date | None,
    pills_per_day: int | None,
) -> ValidationResult:
    result = ValidationResult()
    if not reason_for_change or not reason_for_change.strip():
        result.reject("A reason for change is required for administrative corrections")
    if qty_returned is not None and not record.is_returned:
        result.reject("Quantity returned can only be corrected after a return is recorded")

    result.merge(check_quantities(record.qty_dispensed, qty_returned, pills_per_day))
    result.merge(check_dose_dates(date_of_first_dose, date_of_last_dose))
    return result
