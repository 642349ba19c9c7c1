# ctms/services/compliance.py
"""
Drug compliance calculation.

This is the only place the compliance arithmetic lives. Dispense-time preview,
return-time persistence, administrative date corrections, bulk submit and batch
recalculation all call calculate_compliance() so the stored values can never
diverge between call sites.

    days_used            = (last_dose - first_dose).days + 1
    theoretical_expected = days_used * pills_per_day
    expected_pills       = min(theoretical_expected, qty_dispensed)
    pills_used           = qty_dispensed - qty_returned
    compliance           = round(pills_used / expected_pills * 100, 2)

Compliance above 100% is valid (over-consumption). It is flagged, never
clamped and never rejected.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

from ctms.core.config import get_settings
from ctms.utils.datetime_utils import days_between_inclusive

DEFAULT_PILLS_PER_DAY = 1
DEFAULT_WARNING_THRESHOLD = 120.0
DEFAULT_ERROR_THRESHOLD = 200.0


class ComplianceStatus(str, Enum):
    COMPUTED = "COMPUTED"
    NOT_COMPUTABLE = "NOT_COMPUTABLE"


class ComplianceFlag(str, Enum):
    OVER_COMPLIANCE = "OVER_COMPLIANCE"
    LIKELY_DATA_ERROR = "LIKELY_DATA_ERROR"


@dataclass(frozen=True)
class ComplianceThresholds:
    warning: float = DEFAULT_WARNING_THRESHOLD
    error: float = DEFAULT_ERROR_THRESHOLD

    @classmethod
    def from_settings(cls) -> "ComplianceThresholds":
        settings = get_settings()
        return cls(
            warning=settings.compliance_warning_threshold,
            error=settings.compliance_error_threshold,
        )


@dataclass(frozen=True)
class ComplianceResult:
    status: ComplianceStatus
    days_used: int | None = None
    theoretical_expected: int | None = None
    expected_pills: int | None = None
    pills_used: int | None = None
    compliance_percentage: float | None = None
    flag: ComplianceFlag | None = None

    @property
    def is_computable(self) -> bool:
        return self.status == ComplianceStatus.COMPUTED

    def warning_message(self) -> str | None:
        if self.flag == ComplianceFlag.LIKELY_DATA_ERROR:
            return (
                f"Compliance {self.compliance_percentage}% is implausibly high; "
                "check quantities and dose dates for a data-entry error"
            )
        if self.flag == ComplianceFlag.OVER_COMPLIANCE:
            return f"Compliance {self.compliance_percentage}% indicates over-consumption"
        return None

    def stored_fields(self) -> dict[str, Any]:
        """Derived columns as persisted on an accountability record."""
        return {
            "days_used": self.days_used,
            "expected_pills": self.expected_pills,
            "pills_used": self.pills_used,
            "compliance_percentage": self.compliance_percentage,
        }


NOT_COMPUTABLE = ComplianceResult(status=ComplianceStatus.NOT_COMPUTABLE)


def _round_percentage(numerator: int, denominator: int) -> float:
    value = Decimal(numerator) * 100 / Decimal(denominator)
    return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def classify_compliance(
    percentage: float | None,
    thresholds: ComplianceThresholds,
) -> ComplianceFlag | None:
    if percentage is None:
        return None
    if percentage > thresholds.error:
        return ComplianceFlag.LIKELY_DATA_ERROR
    if percentage > thresholds.warning:
        return ComplianceFlag.OVER_COMPLIANCE
    return None


def calculate_compliance(
    *,
    qty_dispensed: int,
    qty_returned: int,
    date_of_first_dose: date | None,
    date_of_last_dose: date | None,
    pills_per_day: int | None = None,
    thresholds: ComplianceThresholds | None = None,
) -> ComplianceResult:
    """
    Derive days used, expected pills, pills used and compliance percentage.

    Missing dose dates give a NOT_COMPUTABLE result (every derived value None),
    which is distinct from a computed 0%.

    Raises ValueError for inputs the validation layer should already have
    rejected (negative quantities, returned > dispensed, last dose before
    first dose, pills_per_day < 1).
    """
    if thresholds is None:
        thresholds = ComplianceThresholds()
    if pills_per_day is None:
        pills_per_day = DEFAULT_PILLS_PER_DAY

    if qty_dispensed < 0 or qty_returned < 0:
        raise ValueError("Quantities must be non-negative")
    if qty_returned > qty_dispensed:
        raise ValueError("qty_returned cannot exceed qty_dispensed")
    if pills_per_day < 1:
        raise ValueError("pills_per_day must be a positive integer")

    if date_of_first_dose is None or date_of_last_dose is None:
        return NOT_COMPUTABLE

    if date_of_last_dose < date_of_first_dose:
        raise ValueError("date_of_last_dose cannot be before date_of_first_dose")

    days_used = days_between_inclusive(date_of_first_dose, date_of_last_dose)
    theoretical_expected = days_used * pills_per_day
    expected_pills = min(theoretical_expected, qty_dispensed)
    pills_used = qty_dispensed - qty_returned

    percentage = _round_percentage(pills_used, expected_pills) if expected_pills > 0 else None

    return ComplianceResult(
        status=ComplianceStatus.COMPUTED,
        days_used=days_used,
        theoretical_expected=theoretical_expected,
        expected_pills=expected_pills,
        pills_used=pills_used,
        compliance_percentage=percentage,
        flag=classify_compliance(percentage, thresholds),
    )


def calculate_for_record(record: Any, thresholds: ComplianceThresholds | None = None) -> ComplianceResult:
    """
    Run the calculator against a stored accountability record.
    Records without a recorded return are NOT_COMPUTABLE.
    """
    if record.qty_returned is None:
        return NOT_COMPUTABLE
    return calculate_compliance(
        qty_dispensed=record.qty_dispensed,
        qty_returned=record.qty_returned,
        date_of_first_dose=record.date_of_first_dose,
        date_of_last_dose=record.date_of_last_dose,
        pills_per_day=record.pills_per_day,
        thresholds=thresholds,
    )


def apply_to_record(record: Any, result: ComplianceResult) -> bool:
    """
    Copy derived fields onto the record. Returns True if anything changed.
    """
    changed = False
    for field, value in result.stored_fields().items():
        if getattr(record, field) != value:
            setattr(record, field, value)
            changed = True
    return changed
