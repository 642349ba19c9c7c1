from datetime import date

from pydantic import BaseModel, ConfigDict

from ctms.models.visit import SubjectVisitStatus
from ctms.schemas.common import CalendarDate


class VisitResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    visit_name: str
    visit_sequence: int
    expected_offset_days: int
    expected_range_days: int


class SubjectVisitResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subject_id: int
    visit_id: int
    visit_name: str
    visit_sequence: int
    expected_date: date | None = None
    actual_date: date | None = None
    status: SubjectVisitStatus
    in_window: bool | None = None


class SubjectVisitRecord(BaseModel):
    actual_date: CalendarDate
