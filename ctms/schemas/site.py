from datetime import date, datetime

from pydantic import BaseModel, ConfigDict


class SiteBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    site_number: str
    site_name: str


class SiteResponse(SiteBrief):
    pi_name: str | None = None
    country: str | None = None
    status: str
    activated_date: date | None = None
    created_at: datetime
