from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from ctms.models.accountability import ReturnStatus
from ctms.models.drug_unit import DrugUnitStatus
from ctms.schemas.common import CalendarDate
from ctms.services.compliance import ComplianceFlag, ComplianceStatus


class DispenseRequest(BaseModel):
    subject_id: int
    subject_visit_id: int
    drug_unit_id: int
    qty_dispensed: int | None = Field(default=None, ge=0)
    pills_per_day: int | None = Field(default=None, ge=1)
    date_of_first_dose: CalendarDate | None = None
    dispense_date: CalendarDate | None = None
    comments: str | None = None


class ReturnRequest(BaseModel):
    qty_returned: int = Field(ge=0)
    return_date: CalendarDate | None = None
    return_status: ReturnStatus = ReturnStatus.RETURNED
    date_of_last_dose: CalendarDate | None = None
    date_of_first_dose: CalendarDate | None = None
    pills_per_day: int | None = Field(default=None, ge=1)
    reconciliation_date: CalendarDate | None = None
    comments: str | None = None


class BulkReturnItem(ReturnRequest):
    accountability_id: int


class BulkSubmitRequest(BaseModel):
    records: list[BulkReturnItem] = Field(min_length=1)


class CorrectionRequest(BaseModel):
    reason_for_change: str | None = None
    date_of_first_dose: CalendarDate | None = None
    date_of_last_dose: CalendarDate | None = None
    pills_per_day: int | None = Field(default=None, ge=1)
    qty_returned: int | None = Field(default=None, ge=0)
    reconciliation_date: CalendarDate | None = None
    comments: str | None = None


class CompliancePreviewRequest(BaseModel):
    qty_dispensed: int
    qty_returned: int
    date_of_first_dose: CalendarDate | None = None
    date_of_last_dose: CalendarDate | None = None
    pills_per_day: int | None = None


class ComplianceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: ComplianceStatus
    days_used: int | None = None
    theoretical_expected: int | None = None
    expected_pills: int | None = None
    pills_used: int | None = None
    compliance_percentage: float | None = None
    flag: ComplianceFlag | None = None


class CompliancePreviewResponse(BaseModel):
    compliance: ComplianceResponse | None = None
    warnings: list[str] = []
    reasons: list[str] = []


class AccountabilityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subject_id: int
    subject_number: str | None = None
    subject_visit_id: int
    visit_id: int | None = None
    visit_name: str | None = None
    drug_unit_id: int
    drug_code: str | None = None
    lot_number: str | None = None
    drug_unit_status: DrugUnitStatus | None = None
    qty_dispensed: int
    qty_returned: int | None = None
    date_of_first_dose: date | None = None
    date_of_last_dose: date | None = None
    pills_per_day: int
    reconciliation_date: date | None = None
    return_date: date | None = None
    return_status: ReturnStatus | None = None
    days_used: int | None = None
    expected_pills: int | None = None
    pills_used: int | None = None
    compliance_percentage: float | None = None
    comments: str | None = None
    dispensed_by_id: int | None = None
    created_at: datetime
    updated_at: datetime


class AccountabilityMutationResponse(BaseModel):
    record: AccountabilityResponse
    warnings: list[str] = []


class BulkSubmitResponse(BaseModel):
    message: str
    count: int
    data: list[AccountabilityResponse]
    warnings: list[str] = []


class RecalculationResponse(BaseModel):
    processed: int
    changed: int
    not_computable: int
    changed_ids: list[int]
