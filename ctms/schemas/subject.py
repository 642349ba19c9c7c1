from datetime import date, datetime

from pydantic import BaseModel, ConfigDict

from ctms.models.subject import Sex, SubjectStatus
from ctms.schemas.common import CalendarDate, NonEmptyStr
from ctms.schemas.site import SiteBrief
from ctms.schemas.visit import SubjectVisitResponse


class SubjectCreate(BaseModel):
    subject_number: NonEmptyStr
    dob: CalendarDate
    sex: Sex
    consent_date: CalendarDate
    enrollment_date: CalendarDate | None = None
    site_id: int | None = None


class SubjectUpdate(BaseModel):
    dob: CalendarDate | None = None
    sex: Sex | None = None
    status: SubjectStatus | None = None
    termination_date: CalendarDate | None = None
    reason: str | None = None


class NextVisit(BaseModel):
    subject_visit_id: int
    visit_name: str
    expected_date: date | None = None


class SubjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subject_number: str
    site_id: int
    site: SiteBrief | None = None
    dob: date
    sex: Sex
    status: SubjectStatus
    consent_date: date
    enrollment_date: date
    termination_date: date | None = None
    created_at: datetime
    updated_at: datetime


class SubjectListItem(SubjectResponse):
    next_visit: NextVisit | None = None


class SubjectDetail(SubjectResponse):
    visits: list[SubjectVisitResponse] = []
