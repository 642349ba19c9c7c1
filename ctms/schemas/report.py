from datetime import date, datetime

from pydantic import BaseModel

from ctms.models.drug_unit import DrugUnitStatus


class SiteEnrollmentRow(BaseModel):
    site_id: int
    site_number: str
    site_name: str
    total_subjects: int
    active_subjects: int
    completed_subjects: int
    terminated_subjects: int


class MasterLogRow(BaseModel):
    drug_unit_id: int
    drug_code: str
    lot_number: str
    expiration_date: date | None = None
    quantity_per_unit: int
    status: DrugUnitStatus
    site_id: int
    site_number: str | None = None
    site_name: str | None = None
    subject_id: int | None = None
    subject_number: str | None = None
    accountability_id: int | None = None
    qty_dispensed: int | None = None
    qty_returned: int | None = None
    pills_used: int | None = None
    compliance_percentage: float | None = None
    days_used: int | None = None
    expected_pills: int | None = None
    return_date: date | None = None
    reconciliation_date: date | None = None
    dispense_date: datetime | None = None
    visit_name: str | None = None
    visit_sequence: int | None = None
    comments: str | None = None
    assigned_date: date | None = None
    created_at: datetime
    updated_at: datetime


class MasterLogSummary(BaseModel):
    total: int
    available: int
    dispensed: int
    returned: int
    destroyed: int
    missing: int
    by_drug_code: dict[str, int]
