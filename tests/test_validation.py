from datetime import date
from types import SimpleNamespace

import pytest

from ctms.models.drug_unit import DrugUnitStatus
from ctms.models.subject import SubjectStatus
from ctms.services.compliance import calculate_compliance
from ctms.services.validation import (
    ValidationFailedError,
    ValidationOutcome,
    ValidationResult,
    check_compliance,
    check_first_dose_overlap,
    raise_if_rejected,
    validate_correction,
    validate_dispense,
    validate_return,
)


def _unit(**overrides):
    values = dict(
        id=7,
        status=DrugUnitStatus.AVAILABLE,
        expiration_date=date(2030, 1, 1),
        site_id=1,
        quantity_per_unit=30,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _subject(**overrides):
    values = dict(id=3, subject_number="1384-001", status=SubjectStatus.ACTIVE, site_id=1)
    values.update(overrides)
    return SimpleNamespace(**values)


def _record(**overrides):
    values = dict(
        id=11,
        drug_unit_id=7,
        qty_dispensed=30,
        qty_returned=None,
        date_of_first_dose=date(2024, 1, 1),
        date_of_last_dose=None,
        is_returned=False,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _dispense(**overrides):
    kwargs = dict(
        unit=_unit(),
        subject=_subject(),
        subject_visit=SimpleNamespace(subject_id=3),
        qty_dispensed=30,
        pills_per_day=1,
        date_of_first_dose=date(2024, 1, 1),
        dispense_date=date(2024, 1, 1),
    )
    kwargs.update(overrides)
    return validate_dispense(**kwargs)


def test_outcome_levels():
    assert ValidationResult().outcome == ValidationOutcome.OK
    assert ValidationResult().warn("careful").outcome == ValidationOutcome.WARNING
    assert ValidationResult().warn("careful").reject("no").outcome == ValidationOutcome.REJECTED


def test_raise_if_rejected_carries_reasons():
    result = ValidationResult().reject("bad quantity")
    with pytest.raises(ValidationFailedError) as exc_info:
        raise_if_rejected(result, conflict=True)
    assert exc_info.value.conflict is True
    assert exc_info.value.result.reasons == ["bad quantity"]


def test_valid_dispense_is_ok():
    assert _dispense().outcome == ValidationOutcome.OK


@pytest.mark.parametrize(
    "overrides, fragment",
    [
        ({"unit": _unit(status=DrugUnitStatus.DISPENSED)}, "only Available units"),
        ({"unit": _unit(expiration_date=date(2023, 12, 31))}, "expired"),
        ({"subject": _subject(status=SubjectStatus.TERMINATED)}, "not Active"),
        ({"unit": _unit(site_id=2)}, "different sites"),
        ({"subject_visit": SimpleNamespace(subject_id=99)}, "does not belong"),
        ({"qty_dispensed": 31}, "exceeds"),
        ({"qty_dispensed": -1}, "negative"),
        ({"pills_per_day": 0}, "Pills per day"),
    ],
)
def test_dispense_rejections(overrides, fragment):
    result = _dispense(**overrides)
    assert result.is_rejected
    assert any(fragment in reason for reason in result.reasons)


def test_first_dose_overlap_warns():
    unreturned = _record(qty_returned=None)
    overlapping = _record(qty_returned=5, date_of_last_dose=date(2024, 2, 1))
    finished = _record(qty_returned=5, date_of_last_dose=date(2024, 1, 15))

    result = check_first_dose_overlap(date(2024, 1, 20), [unreturned, overlapping, finished])
    assert result.outcome == ValidationOutcome.WARNING
    assert len(result.warnings) == 2


def test_return_over_dispensed_rejected():
    result = validate_return(
        record=_record(),
        qty_returned=31,
        return_date=date(2024, 2, 1),
        date_of_first_dose=date(2024, 1, 1),
        date_of_last_dose=date(2024, 1, 30),
        pills_per_day=1,
    )
    assert result.is_rejected


def test_second_return_rejected():
    result = validate_return(
        record=_record(qty_returned=5, is_returned=True),
        qty_returned=5,
        return_date=None,
        date_of_first_dose=None,
        date_of_last_dose=None,
        pills_per_day=None,
    )
    assert any("already been recorded" in r for r in result.reasons)


def test_return_date_oddities_only_warn():
    result = validate_return(
        record=_record(),
        qty_returned=0,
        return_date=date(2024, 1, 20),
        date_of_first_dose=date(2024, 1, 1),
        date_of_last_dose=date(2024, 1, 30),
        pills_per_day=1,
    )
    assert result.outcome == ValidationOutcome.WARNING


def test_inverted_dose_dates_rejected():
    result = validate_return(
        record=_record(),
        qty_returned=0,
        return_date=None,
        date_of_first_dose=date(2024, 1, 30),
        date_of_last_dose=date(2024, 1, 1),
        pills_per_day=1,
    )
    assert result.is_rejected


def test_correction_requires_reason():
    result = validate_correction(
        record=_record(qty_returned=5, is_returned=True),
        reason_for_change="  ",
        qty_returned=None,
        date_of_first_dose=None,
        date_of_last_dose=None,
        pills_per_day=None,
    )
    assert any("reason for change" in r for r in result.reasons)


def test_correction_of_unreturned_quantity_rejected():
    result = validate_correction(
        record=_record(),
        reason_for_change="Transcription error",
        qty_returned=3,
        date_of_first_dose=None,
        date_of_last_dose=None,
        pills_per_day=None,
    )
    assert result.is_rejected


def test_compliance_findings_are_warnings():
    flagged = calculate_compliance(
        qty_dispensed=10,
        qty_returned=0,
        date_of_first_dose=date(2024, 1, 1),
        date_of_last_dose=date(2024, 1, 1),
        pills_per_day=2,
    )
    missing = calculate_compliance(
        qty_dispensed=10,
        qty_returned=0,
        date_of_first_dose=None,
        date_of_last_dose=None,
    )
    assert check_compliance(flagged).outcome == ValidationOutcome.WARNING
    assert check_compliance(missing).outcome == ValidationOutcome.WARNING
