from datetime import date
from types import SimpleNamespace

import pytest

from ctms.core.config import get_settings
from ctms.services.compliance import (
    ComplianceFlag,
    ComplianceStatus,
    ComplianceThresholds,
    apply_to_record,
    calculate_compliance,
    calculate_for_record,
    classify_compliance,
)


def test_standard_thirty_day_course():
    result = calculate_compliance(
        qty_dispensed=30,
        qty_returned=5,
        date_of_first_dose=date(2024, 1, 1),
        date_of_last_dose=date(2024, 1, 30),
        pills_per_day=1,
    )
    assert result.status == ComplianceStatus.COMPUTED
    assert result.days_used == 30
    assert result.theoretical_expected == 30
    assert result.expected_pills == 30
    assert result.pills_used == 25
    assert result.compliance_percentage == 83.33
    assert result.flag is None


def test_implausible_compliance_is_flagged_not_rejected():
    result = calculate_compliance(
        qty_dispensed=10,
        qty_returned=0,
        date_of_first_dose=date(2024, 1, 1),
        date_of_last_dose=date(2024, 1, 1),
        pills_per_day=2,
    )
    assert result.days_used == 1
    assert result.theoretical_expected == 2
    assert result.expected_pills == 2
    assert result.pills_used == 10
    assert result.compliance_percentage == 500.0
    assert result.flag == ComplianceFlag.LIKELY_DATA_ERROR
    assert result.warning_message()


def test_expected_pills_capped_at_dispensed():
    result = calculate_compliance(
        qty_dispensed=30,
        qty_returned=0,
        date_of_first_dose=date(2024, 1, 1),
        date_of_last_dose=date(2024, 3, 31),
        pills_per_day=2,
    )
    assert result.theoretical_expected == 182
    assert result.expected_pills == 30
    assert result.compliance_percentage == 100.0


@pytest.mark.parametrize(
    "first, last",
    [(None, date(2024, 1, 10)), (date(2024, 1, 1), None), (None, None)],
)
def test_missing_dose_dates_not_computable(first, last):
    result = calculate_compliance(
        qty_dispensed=30,
        qty_returned=10,
        date_of_first_dose=first,
        date_of_last_dose=last,
        pills_per_day=1,
    )
    assert result.status == ComplianceStatus.NOT_COMPUTABLE
    assert result.compliance_percentage is None
    assert result.stored_fields() == {
        "days_used": None,
        "expected_pills": None,
        "pills_used": None,
        "compliance_percentage": None,
    }


def test_nothing_used_is_zero_not_none():
    result = calculate_compliance(
        qty_dispensed=30,
        qty_returned=30,
        date_of_first_dose=date(2024, 1, 1),
        date_of_last_dose=date(2024, 1, 10),
    )
    assert result.pills_used == 0
    assert result.compliance_percentage == 0.0


def test_same_day_counts_one_day():
    result = calculate_compliance(
        qty_dispensed=30,
        qty_returned=29,
        date_of_first_dose=date(2024, 6, 15),
        date_of_last_dose=date(2024, 6, 15),
    )
    assert result.days_used == 1
    assert result.compliance_percentage == 100.0


def test_rounds_half_up():
    # 1/8 = 12.5% exactly; 2/3 = 66.666...%
    eighth = calculate_compliance(
        qty_dispensed=8,
        qty_returned=7,
        date_of_first_dose=date(2024, 1, 1),
        date_of_last_dose=date(2024, 1, 8),
    )
    assert eighth.compliance_percentage == 12.5

    third = calculate_compliance(
        qty_dispensed=3,
        qty_returned=1,
        date_of_first_dose=date(2024, 1, 1),
        date_of_last_dose=date(2024, 1, 3),
    )
    assert third.compliance_percentage == 66.67


def test_over_compliance_warning_band():
    result = calculate_compliance(
        qty_dispensed=30,
        qty_returned=0,
        date_of_first_dose=date(2024, 1, 1),
        date_of_last_dose=date(2024, 1, 20),
    )
    assert result.compliance_percentage == 150.0
    assert result.flag == ComplianceFlag.OVER_COMPLIANCE


def test_custom_thresholds():
    thresholds = ComplianceThresholds(warning=90.0, error=140.0)
    assert classify_compliance(95.0, thresholds) == ComplianceFlag.OVER_COMPLIANCE
    assert classify_compliance(150.0, thresholds) == ComplianceFlag.LIKELY_DATA_ERROR
    assert classify_compliance(90.0, thresholds) is None
    assert classify_compliance(None, thresholds) is None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"qty_dispensed": -1, "qty_returned": 0},
        {"qty_dispensed": 10, "qty_returned": 11},
        {"qty_dispensed": 10, "qty_returned": 0, "pills_per_day": 0},
        {
            "qty_dispensed": 10,
            "qty_returned": 0,
            "date_of_first_dose": date(2024, 1, 10),
            "date_of_last_dose": date(2024, 1, 1),
        },
    ],
)
def test_invalid_inputs_raise(kwargs):
    kwargs.setdefault("date_of_first_dose", date(2024, 1, 1))
    kwargs.setdefault("date_of_last_dose", date(2024, 1, 10))
    with pytest.raises(ValueError):
        calculate_compliance(**kwargs)


def test_record_helpers_are_idempotent():
    record = SimpleNamespace(
        qty_dispensed=30,
        qty_returned=5,
        date_of_first_dose=date(2024, 1, 1),
        date_of_last_dose=date(2024, 1, 30),
        pills_per_day=1,
        days_used=None,
        expected_pills=None,
        pills_used=None,
        compliance_percentage=None,
    )
    first = calculate_for_record(record)
    assert apply_to_record(record, first) is True
    second = calculate_for_record(record)
    assert second == first
    assert apply_to_record(record, second) is False
    assert record.compliance_percentage == 83.33


def test_unreturned_record_not_computable():
    record = SimpleNamespace(
        qty_dispensed=30,
        qty_returned=None,
        date_of_first_dose=date(2024, 1, 1),
        date_of_last_dose=None,
        pills_per_day=1,
    )
    assert calculate_for_record(record).status == ComplianceStatus.NOT_COMPUTABLE


def test_thresholds_follow_settings(monkeypatch):
    monkeypatch.setenv("COMPLIANCE_WARNING_THRESHOLD", "110")
    monkeypatch.setenv("COMPLIANCE_ERROR_THRESHOLD", "150")
    get_settings.cache_clear()
    try:
        thresholds = ComplianceThresholds.from_settings()
    finally:
        get_settings.cache_clear()

    assert thresholds == ComplianceThresholds(warning=110.0, error=150.0)
