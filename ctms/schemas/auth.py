from pydantic import BaseModel, ConfigDict, Field

from ctms.models.user import RoleName


class LoginRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class LoginUser(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    username: str
    email: str | None = None
    role: RoleName
    site_id: int | None = None


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    user: LoginUser


class ElectronicSignature(BaseModel):
    """Re-entered credentials for Part 11 signed actions (destruction)."""

    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    meaning: str = Field(default="Destruction of investigational product", min_length=1)
