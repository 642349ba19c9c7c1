# ctms/api/v1/endpoints/subjects.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ctms.api.v1.transaction import commit_or_raise
from ctms.core.access_context import AccessContext, AccessDeniedError, get_access_context
from ctms.core.database import get_db
from ctms.dependencies.authz import require_roles
from ctms.models.audit_log import AuditAction
from ctms.models.subject import Subject, SubjectStatus
from ctms.models.user import CLINICAL_ROLES, User
from ctms.models.visit import SubjectVisit
from ctms.schemas.subject import (
    NextVisit,
    SubjectCreate,
    SubjectDetail,
    SubjectListItem,
    SubjectResponse,
    SubjectUpdate,
)
from ctms.schemas.visit import SubjectVisitRecord, SubjectVisitResponse
from ctms.services.audit_service import record_audit, snapshot
from ctms.services.report_service import invalidate_site_enrollment
from ctms.services.subject_service import (
    DuplicateSubjectError,
    InvalidStatusTransitionError,
    SiteNotFoundError,
    SubjectNotFoundError,
    enroll_subject,
    get_subject,
    list_subjects,
    update_subject,
)
from ctms.services.visit_schedule import (
    SubjectVisitNotFoundError,
    get_subject_visit,
    get_subject_visits,
    is_in_window,
    next_scheduled_visit,
    record_visit,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _visit_response(subject_visit: SubjectVisit) -> SubjectVisitResponse:
    return SubjectVisitResponse(
        id=subject_visit.id,
        subject_id=subject_visit.subject_id,
        visit_id=subject_visit.visit_id,
        visit_name=subject_visit.visit.visit_name,
        visit_sequence=subject_visit.visit.visit_sequence,
        expected_date=subject_visit.expected_date,
        actual_date=subject_visit.actual_date,
        status=subject_visit.status,
        in_window=is_in_window(subject_visit),
    )


def _load_subject(db: Session, ctx: AccessContext, subject_id: int) -> Subject:
    try:
        subject = get_subject(db, subject_id)
        ctx.ensure_site_access(subject.site_id)
    except SubjectNotFoundError:
        raise HTTPException(status_code=404, detail="Subject not found")
    except AccessDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return subject


def _detail(db: Session, subject: Subject) -> SubjectDetail:
    base = SubjectResponse.model_validate(subject).model_dump()
    return SubjectDetail(**base, visits=[_visit_response(v) for v in get_subject_visits(db, subject.id)])


@router.get("", response_model=list[SubjectListItem])
def list_subjects_endpoint(
    site: int | None = Query(None, description="Site id filter"),
    status_filter: SubjectStatus | None = Query(None, alias="status"),
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
) -> list[SubjectListItem]:
    try:
        site_id = ctx.scoped_site_id(site)
    except AccessDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))

    items: list[SubjectListItem] = []
    for subject in list_subjects(db, site_id=site_id, status=status_filter):
        upcoming = next_scheduled_visit(db, subject.id)
        base = SubjectResponse.model_validate(subject).model_dump()
        items.append(
            SubjectListItem(
                **base,
                next_visit=NextVisit(
                    subject_visit_id=upcoming.id,
                    visit_name=upcoming.visit.visit_name,
                    expected_date=upcoming.expected_date,
                )
                if upcoming
                else None,
            )
        )
    return items


@router.get("/{subject_id}", response_model=SubjectDetail)
def get_subject_endpoint(
    subject_id: int,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
) -> SubjectDetail:
    return _detail(db, _load_subject(db, ctx, subject_id))


@router.post("", response_model=SubjectDetail, status_code=status.HTTP_201_CREATED)
def enroll_subject_endpoint(
    payload: SubjectCreate,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
    current_user: User = Depends(require_roles(CLINICAL_ROLES)),
) -> SubjectDetail:
    site_id = payload.site_id if payload.site_id is not None else ctx.site_id
    try:
        ctx.ensure_site_access(site_id)
        subject = enroll_subject(
            db,
            actor=current_user,
            subject_number=payload.subject_number,
            site_id=site_id,
            dob=payload.dob,
            sex=payload.sex,
            consent_date=payload.consent_date,
            enrollment_date=payload.enrollment_date,
        )
    except AccessDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except SiteNotFoundError:
        raise HTTPException(status_code=404, detail="Site not found")
    except DuplicateSubjectError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    commit_or_raise(db, "Failed to create subject.")
    invalidate_site_enrollment(site_id)
    db.refresh(subject)
    return _detail(db, subject)


@router.put("/{subject_id}", response_model=SubjectDetail)
def update_subject_endpoint(
    subject_id: int,
    payload: SubjectUpdate,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
    current_user: User = Depends(require_roles(CLINICAL_ROLES)),
) -> SubjectDetail:
    subject = _load_subject(db, ctx, subject_id)
    try:
        update_subject(
            db,
            actor=current_user,
            subject=subject,
            dob=payload.dob,
            sex=payload.sex,
            status=payload.status,
            termination_date=payload.termination_date,
            reason=payload.reason,
        )
    except InvalidStatusTransitionError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    commit_or_raise(db, "Failed to update subject.")
    invalidate_site_enrollment(subject.site_id)
    db.refresh(subject)
    return _detail(db, subject)


@router.put("/{subject_id}/visits/{subject_visit_id}", response_model=SubjectVisitResponse)
def record_visit_endpoint(
    subject_id: int,
    subject_visit_id: int,
    payload: SubjectVisitRecord,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
    current_user: User = Depends(require_roles(CLINICAL_ROLES)),
) -> SubjectVisitResponse:
    subject = _load_subject(db, ctx, subject_id)
    try:
        subject_visit = get_subject_visit(db, subject_visit_id)
    except SubjectVisitNotFoundError:
        raise HTTPException(status_code=404, detail="Subject visit not found")
    if subject_visit.subject_id != subject.id:
        raise HTTPException(status_code=404, detail="Subject visit not found")
    if payload.actual_date < subject.enrollment_date:
        raise HTTPException(status_code=400, detail="Visit date cannot be before the enrollment date")

    fields = ("actual_date", "status")
    old = snapshot(subject_visit, fields)
    record_visit(subject_visit, payload.actual_date)
    record_audit(
        db,
        actor=current_user,
        action=AuditAction.UPDATE,
        table_name="subject_visits",
        record_id=subject_visit.id,
        old_values=old,
        new_values=snapshot(subject_visit, fields),
    )
    commit_or_raise(db, "Failed to record visit.")
    db.refresh(subject_visit)
    return _visit_response(subject_visit)
