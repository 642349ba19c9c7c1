# ctms/api/v1/endpoints/audit.py
from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from ctms.core.config import get_settings
from ctms.core.database import get_db
from ctms.dependencies.authz import require_roles
from ctms.models.audit_log import AUDITED_TABLES, AuditAction
from ctms.models.user import AUDIT_ROLES, User
from ctms.schemas.audit import AuditFilterOptions, AuditLogPage, AuditLogResponse
from ctms.services.audit_service import (
    AuditEntryNotFoundError,
    AuditFilters,
    export_audit_csv,
    get_audit_entry,
    list_audit_logs,
)
from ctms.utils.datetime_utils import utc_today

router = APIRouter()


@router.get("", response_model=AuditLogPage)
def list_audit_log(
    user_id: int | None = Query(None),
    action: AuditAction | None = Query(None),
    table_name: str | None = Query(None),
    record_id: str | None = Query(None),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(AUDIT_ROLES)),
) -> AuditLogPage:
    entries, total = list_audit_logs(
        db,
        AuditFilters(
            user_id=user_id,
            action=action,
            table_name=table_name,
            record_id=record_id,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset,
        ),
    )
    return AuditLogPage(
        data=[AuditLogResponse.model_validate(e) for e in entries],
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(entries) < total,
    )


@router.get("/export/csv")
def export_audit_log_csv(
    user_id: int | None = Query(None),
    action: AuditAction | None = Query(None),
    table_name: str | None = Query(None),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(AUDIT_ROLES)),
):
    """
    Export the filtered audit trail to CSV (capped at AUDIT_EXPORT_LIMIT rows).
    """
    entries, _ = list_audit_logs(
        db,
        AuditFilters(
            user_id=user_id,
            action=action,
            table_name=table_name,
            start_date=start_date,
            end_date=end_date,
            limit=get_settings().audit_export_limit,
        ),
    )
    if not entries:
        raise HTTPException(status_code=404, detail="No audit log entries found")

    filename = f"audit_log_{utc_today().isoformat()}.csv"
    return StreamingResponse(
        iter([export_audit_csv(entries)]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/filters/options", response_model=AuditFilterOptions)
def audit_filter_options(
    current_user: User = Depends(require_roles(AUDIT_ROLES)),
) -> AuditFilterOptions:
    return AuditFilterOptions(actions=list(AuditAction), tables=list(AUDITED_TABLES))


@router.get("/{entry_id}", response_model=AuditLogResponse)
def get_audit_log_entry(
    entry_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(AUDIT_ROLES)),
) -> AuditLogResponse:
    try:
        return AuditLogResponse.model_validate(get_audit_entry(db, entry_id))
    except AuditEntryNotFoundError:
        raise HTTPException(status_code=404, detail="Audit entry not found")
