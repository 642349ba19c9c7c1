from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from ctms.models.drug_unit import DEFAULT_QUANTITY_PER_UNIT, DrugUnitStatus
from ctms.schemas.auth import ElectronicSignature
from ctms.schemas.common import CalendarDate, NonEmptyStr


class DrugUnitResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    drug_code: str
    lot_number: str
    expiration_date: date | None = None
    quantity_per_unit: int
    unit_description: str | None = None
    status: DrugUnitStatus
    site_id: int
    subject_id: int | None = None
    assigned_date: date | None = None
    version: int
    created_at: datetime
    updated_at: datetime


class ShipmentCreate(BaseModel):
    site_id: int | None = None
    drug_code: NonEmptyStr
    lot_number: NonEmptyStr
    expiration_date: CalendarDate | None = None
    quantity_per_unit: int = Field(default=DEFAULT_QUANTITY_PER_UNIT, ge=1)
    unit_description: str | None = None
    count: int = Field(default=1, ge=1, le=500)


class DrugUnitStatusUpdate(BaseModel):
    status: DrugUnitStatus
    reason: str | None = None
    # Optional optimistic-lock check; a mismatch is a 409.
    version: int | None = None


class BulkSiteStatusUpdate(BaseModel):
    status: DrugUnitStatus
    reason: str | None = None


class BulkSiteStatusResult(BaseModel):
    updated: int
    skipped: int
    review_required: bool = True
    units: list[DrugUnitResponse]


class DestroyRequest(BaseModel):
    drug_unit_ids: list[int] = Field(min_length=1)
    signature: ElectronicSignature
    destruction_date: CalendarDate | None = None
    reason: str | None = None
