from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ctms.core.access_context import AccessContext, AccessDeniedError, get_access_context
from ctms.core.database import get_db
from ctms.schemas.report import MasterLogRow, MasterLogSummary
from ctms.services.report_service import master_log, master_log_summary

router = APIRouter()


def _scope(ctx: AccessContext, site_id: int | None) -> int | None:
    try:
        return ctx.scoped_site_id(site_id)
    except AccessDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))


@router.get("/master-log", response_model=list[MasterLogRow])
def get_master_log(
    site_id: int | None = Query(None),
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
) -> list[MasterLogRow]:
    """
    Full bottle lifecycle per drug unit (Master Accountability Log).
    """
    return [MasterLogRow(**row) for row in master_log(db, site_id=_scope(ctx, site_id))]


@router.get("/master-log/summary", response_model=MasterLogSummary)
def get_master_log_summary(
    site_id: int | None = Query(None),
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
) -> MasterLogSummary:
    return MasterLogSummary(**master_log_summary(db, site_id=_scope(ctx, site_id)))
