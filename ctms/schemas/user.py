from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr

from ctms.models.user import RoleName
from ctms.schemas.site import SiteBrief


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str | None = None
    role: RoleName
    site_id: int | None = None
    site: SiteBrief | None = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class UserProfileUpdate(BaseModel):
    email: EmailStr
