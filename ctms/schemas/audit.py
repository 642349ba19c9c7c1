from datetime import datetime

from pydantic import BaseModel, ConfigDict

from ctms.models.audit_log import AuditAction


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int | None = None
    username: str | None = None
    action: AuditAction
    table_name: str
    record_id: str | None = None
    old_values: str | None = None
    new_values: str | None = None
    reason: str | None = None
    ip_address: str | None = None
    created_at: datetime


class AuditLogPage(BaseModel):
    data: list[AuditLogResponse]
    total: int
    limit: int
    offset: int
    has_more: bool


class AuditFilterOptions(BaseModel):
    actions: list[AuditAction]
    tables: list[str]
