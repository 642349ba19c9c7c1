# ctms/api/v1/endpoints/accountability.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ctms.api.v1.transaction import commit_or_raise, validation_http_error
from ctms.core.access_context import AccessContext, AccessDeniedError, get_access_context
from ctms.core.database import get_db
from ctms.dependencies.authz import require_roles
from ctms.models.accountability import AccountabilityRecord
from ctms.models.subject import Subject
from ctms.models.user import CLINICAL_ROLES, RoleName, User
from ctms.schemas.accountability import (
    AccountabilityMutationResponse,
    AccountabilityResponse,
    BulkSubmitRequest,
    BulkSubmitResponse,
    CompliancePreviewRequest,
    CompliancePreviewResponse,
    ComplianceResponse,
    CorrectionRequest,
    DispenseRequest,
    RecalculationResponse,
    ReturnRequest,
)
from ctms.services import accountability_service
from ctms.services.accountability_service import AccountabilityNotFoundError, ReturnInput
from ctms.services.compliance import ComplianceThresholds
from ctms.services.drug_unit_service import DrugUnitNotFoundError, InvalidTransitionError
from ctms.services.subject_service import SubjectNotFoundError
from ctms.services.validation import ValidationFailedError
from ctms.services.visit_schedule import SubjectVisitNotFoundError

router = APIRouter()
logger = logging.getLogger(__name__)


def to_response(record: AccountabilityRecord) -> AccountabilityResponse:
    subject_visit = record.subject_visit
    visit = subject_visit.visit if subject_visit else None
    unit = record.drug_unit
    return AccountabilityResponse(
        id=record.id,
        subject_id=record.subject_id,
        subject_number=record.subject.subject_number if record.subject else None,
        subject_visit_id=record.subject_visit_id,
        visit_id=visit.id if visit else None,
        visit_name=visit.visit_name if visit else None,
        drug_unit_id=record.drug_unit_id,
        drug_code=unit.drug_code if unit else None,
        lot_number=unit.lot_number if unit else None,
        drug_unit_status=unit.status if unit else None,
        qty_dispensed=record.qty_dispensed,
        qty_returned=record.qty_returned,
        date_of_first_dose=record.date_of_first_dose,
        date_of_last_dose=record.date_of_last_dose,
        pills_per_day=record.pills_per_day,
        reconciliation_date=record.reconciliation_date,
        return_date=record.return_date,
        return_status=record.return_status,
        days_used=record.days_used,
        expected_pills=record.expected_pills,
        pills_used=record.pills_used,
        compliance_percentage=record.compliance_percentage,
        comments=record.comments,
        dispensed_by_id=record.dispensed_by_id,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _ensure_record_access(db: Session, ctx: AccessContext, accountability_id: int) -> AccountabilityRecord:
    try:
        record = accountability_service.get_record(db, accountability_id)
        ctx.ensure_site_access(record.subject.site_id)
    except AccountabilityNotFoundError:
        raise HTTPException(status_code=404, detail="Accountability record not found")
    except AccessDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return record


def _reload(db: Session, record_id: int) -> AccountabilityRecord:
    db.expire_all()
    return accountability_service.get_record(db, record_id)


@router.get("", response_model=list[AccountabilityResponse])
def list_accountability(
    site_id: int | None = Query(None),
    subject_id: int | None = Query(None),
    visit_id: int | None = Query(None),
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
) -> list[AccountabilityResponse]:
    try:
        scoped = ctx.scoped_site_id(site_id)
    except AccessDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    records = accountability_service.list_records(
        db, site_id=scoped, subject_id=subject_id, visit_id=visit_id
    )
    return [to_response(r) for r in records]


@router.post("", response_model=AccountabilityMutationResponse, status_code=status.HTTP_201_CREATED)
def dispense_endpoint(
    payload: DispenseRequest,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
    current_user: User = Depends(require_roles(CLINICAL_ROLES)),
) -> AccountabilityMutationResponse:
    """
    Dispense a drug unit to a subject at a visit.
    Record, unit status change and audit entries commit together.
    """
    subject = db.query(Subject).filter(Subject.id == payload.subject_id).first()
    if not subject:
        raise HTTPException(status_code=404, detail="Subject not found")
    if not ctx.can_access_site(subject.site_id):
        raise HTTPException(status_code=403, detail="You do not have access to this site")

    try:
        record, result = accountability_service.dispense(
            db,
            actor=current_user,
            subject_id=payload.subject_id,
            subject_visit_id=payload.subject_visit_id,
            drug_unit_id=payload.drug_unit_id,
            qty_dispensed=payload.qty_dispensed,
            pills_per_day=payload.pills_per_day,
            date_of_first_dose=payload.date_of_first_dose,
            dispense_date=payload.dispense_date,
            comments=payload.comments,
        )
    except ValidationFailedError as e:
        raise validation_http_error(db, e)
    except (DrugUnitNotFoundError, SubjectNotFoundError, SubjectVisitNotFoundError) as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransitionError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(e))

    record_id = record.id
    commit_or_raise(db, "Failed to dispense drug unit.")
    return AccountabilityMutationResponse(record=to_response(_reload(db, record_id)), warnings=result.warnings)


@router.post("/compliance-preview", response_model=CompliancePreviewResponse)
def compliance_preview(
    payload: CompliancePreviewRequest,
    ctx: AccessContext = Depends(get_access_context),
) -> CompliancePreviewResponse:
    """
    What the stored values would be for these inputs. Nothing is persisted.
    """
    compliance, result = accountability_service.preview_compliance(
        qty_dispensed=payload.qty_dispensed,
        qty_returned=payload.qty_returned,
        date_of_first_dose=payload.date_of_first_dose,
        date_of_last_dose=payload.date_of_last_dose,
        pills_per_day=payload.pills_per_day,
        thresholds=ComplianceThresholds.from_settings(),
    )
    return CompliancePreviewResponse(
        compliance=ComplianceResponse.model_validate(compliance) if compliance else None,
        warnings=result.warnings,
        reasons=result.reasons,
    )


@router.post("/bulk-submit", response_model=BulkSubmitResponse)
def bulk_submit_endpoint(
    payload: BulkSubmitRequest,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
    current_user: User = Depends(require_roles(CLINICAL_ROLES)),
) -> BulkSubmitResponse:
    """
    Record several returns at once. All or nothing.
    """
    for item in payload.records:
        _ensure_record_access(db, ctx, item.accountability_id)

    items = [ReturnInput(**item.model_dump()) for item in payload.records]
    try:
        records, result = accountability_service.bulk_submit(db, actor=current_user, items=items)
    except ValidationFailedError as e:
        raise validation_http_error(db, e)
    except InvalidTransitionError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    ids = [r.id for r in records]
    commit_or_raise(db, "Failed to submit accountability records.")
    data = [to_response(_reload(db, record_id)) for record_id in ids]
    return BulkSubmitResponse(
        message=f"Successfully processed {len(data)} accountability record(s)",
        count=len(data),
        data=data,
        warnings=result.warnings,
    )


@router.post("/recalculate", response_model=RecalculationResponse)
def recalculate_endpoint(
    dry_run: bool = Query(False),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles([RoleName.ADMIN])),
) -> RecalculationResponse:
    """
    Re-derive stored compliance for every returned record.
    """
    summary = accountability_service.recalculate_all(db, actor=current_user, dry_run=dry_run)
    if dry_run:
        db.rollback()
    else:
        commit_or_raise(db, "Failed to recalculate compliance.")
    return RecalculationResponse(
        processed=summary.processed,
        changed=summary.changed,
        not_computable=summary.not_computable,
        changed_ids=summary.changed_ids,
    )


@router.get("/{accountability_id}", response_model=AccountabilityResponse)
def get_accountability(
    accountability_id: int,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
) -> AccountabilityResponse:
    return to_response(_ensure_record_access(db, ctx, accountability_id))


@router.put("/{accountability_id}", response_model=AccountabilityMutationResponse)
def correct_accountability(
    accountability_id: int,
    payload: CorrectionRequest,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
    current_user: User = Depends(require_roles(CLINICAL_ROLES)),
) -> AccountabilityMutationResponse:
    """
    Administrative correction; reason_for_change is mandatory.
    """
    _ensure_record_access(db, ctx, accountability_id)
    try:
        record, result = accountability_service.correct_record(
            db,
            actor=current_user,
            accountability_id=accountability_id,
            reason_for_change=payload.reason_for_change,
            date_of_first_dose=payload.date_of_first_dose,
            date_of_last_dose=payload.date_of_last_dose,
            pills_per_day=payload.pills_per_day,
            qty_returned=payload.qty_returned,
            reconciliation_date=payload.reconciliation_date,
            comments=payload.comments,
        )
    except ValidationFailedError as e:
        raise validation_http_error(db, e)

    commit_or_raise(db, "Failed to update accountability record.")
    return AccountabilityMutationResponse(
        record=to_response(_reload(db, accountability_id)),
        warnings=result.warnings,
    )


@router.put("/{accountability_id}/return", response_model=AccountabilityMutationResponse)
def record_return_endpoint(
    accountability_id: int,
    payload: ReturnRequest,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
    current_user: User = Depends(require_roles(CLINICAL_ROLES)),
) -> AccountabilityMutationResponse:
    _ensure_record_access(db, ctx, accountability_id)
    try:
        record, result = accountability_service.record_return(
            db,
            actor=current_user,
            data=ReturnInput(accountability_id=accountability_id, **payload.model_dump()),
        )
    except ValidationFailedError as e:
        raise validation_http_error(db, e)
    except InvalidTransitionError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(e))

    commit_or_raise(db, "Failed to record return.")
    return AccountabilityMutationResponse(
        record=to_response(_reload(db, accountability_id)),
        warnings=result.warnings,
    )
