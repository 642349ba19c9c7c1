# ctms/api/v1/endpoints/reports.py
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from ctms.api.v1.endpoints.accountability import to_response
from ctms.core.access_context import AccessContext, AccessDeniedError, get_access_context
from ctms.core.database import get_db
from ctms.models.site import Site
from ctms.schemas.accountability import AccountabilityResponse
from ctms.schemas.report import SiteEnrollmentRow
from ctms.schemas.subject import SubjectResponse
from ctms.services import report_service
from ctms.utils.datetime_utils import utc_today
from ctms.utils.report_pdf import generate_accountability_pdf

router = APIRouter()


def _scope(ctx: AccessContext, site_id: int | None) -> int | None:
    try:
        return ctx.scoped_site_id(site_id)
    except AccessDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))


@router.get("/subject-summary", response_model=list[SubjectResponse])
def subject_summary_report(
    site_id: int | None = Query(None),
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
) -> list[SubjectResponse]:
    subjects = report_service.subject_summary(db, site_id=_scope(ctx, site_id))
    return [SubjectResponse.model_validate(s) for s in subjects]


@router.get("/site-enrollment", response_model=list[SiteEnrollmentRow])
def site_enrollment_report(
    site_id: int | None = Query(None),
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
) -> list[SiteEnrollmentRow]:
    rows = report_service.site_enrollment(db, site_id=_scope(ctx, site_id))
    return [SiteEnrollmentRow(**row) for row in rows]


@router.get("/drug-accountability", response_model=list[AccountabilityResponse])
def drug_accountability_report(
    site_id: int | None = Query(None),
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
) -> list[AccountabilityResponse]:
    records = report_service.drug_accountability(db, site_id=_scope(ctx, site_id))
    return [to_response(r) for r in records]


@router.get("/drug-accountability/export/pdf")
def drug_accountability_pdf(
    site_id: int | None = Query(None),
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
):
    scoped = _scope(ctx, site_id)
    records = report_service.drug_accountability(db, site_id=scoped)
    rows = [to_response(r).model_dump() for r in records]

    site_label = None
    if scoped is not None:
        site = db.query(Site).filter(Site.id == scoped).first()
        if site:
            site_label = f"{site.site_number} {site.site_name}"

    buffer = generate_accountability_pdf(rows, site_label=site_label, generated_by=ctx.user.username)
    filename = f"drug_accountability_{utc_today().isoformat()}.pdf"
    return StreamingResponse(
        buffer,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
