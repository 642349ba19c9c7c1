# ctms/api/v1/endpoints/drug_units.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ctms.api.v1.transaction import commit_or_raise
from ctms.core.access_context import AccessContext, AccessDeniedError, get_access_context
from ctms.core.database import get_db
from ctms.dependencies.authz import require_roles
from ctms.models.drug_unit import DrugUnitStatus
from ctms.models.site import Site
from ctms.models.user import CLINICAL_ROLES, RoleName, User
from ctms.schemas.drug_unit import (
    BulkSiteStatusResult,
    BulkSiteStatusUpdate,
    DestroyRequest,
    DrugUnitResponse,
    DrugUnitStatusUpdate,
    ShipmentCreate,
)
from ctms.services.drug_unit_service import (
    AccountabilityRequiredError,
    DrugUnitNotFoundError,
    InvalidTransitionError,
    SignatureVerificationError,
    bulk_override_site,
    destroy_units,
    get_drug_unit,
    list_drug_units,
    register_shipment,
    update_status,
)

router = APIRouter()
logger = logging.getLogger(__name__)

INVENTORY_ROLES = (RoleName.ADMIN, RoleName.COORDINATOR)


def _load_unit(db: Session, ctx: AccessContext, unit_id: int, *, for_update: bool = False):
    try:
        unit = get_drug_unit(db, unit_id, for_update=for_update)
        ctx.ensure_site_access(unit.site_id)
    except DrugUnitNotFoundError:
        raise HTTPException(status_code=404, detail="Drug unit not found")
    except AccessDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return unit


@router.get("", response_model=list[DrugUnitResponse])
def list_drug_units_endpoint(
    site_id: int | None = Query(None),
    status_filter: DrugUnitStatus | None = Query(None, alias="status"),
    drug_code: str | None = Query(None),
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
) -> list[DrugUnitResponse]:
    try:
        scoped = ctx.scoped_site_id(site_id)
    except AccessDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    units = list_drug_units(db, site_id=scoped, status=status_filter, drug_code=drug_code)
    return [DrugUnitResponse.model_validate(u) for u in units]


@router.get("/site/{site_id}", response_model=list[DrugUnitResponse])
def list_site_drug_units(
    site_id: int,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
) -> list[DrugUnitResponse]:
    if not ctx.can_access_site(site_id):
        raise HTTPException(status_code=403, detail="You do not have access to this site")
    return [DrugUnitResponse.model_validate(u) for u in list_drug_units(db, site_id=site_id)]


@router.post("", response_model=list[DrugUnitResponse], status_code=status.HTTP_201_CREATED)
def register_shipment_endpoint(
    payload: ShipmentCreate,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
    current_user: User = Depends(require_roles(INVENTORY_ROLES)),
) -> list[DrugUnitResponse]:
    """
    Receive a shipment: creates `count` Available units at the site.
    """
    site_id = payload.site_id if payload.site_id is not None else ctx.site_id
    if site_id is None:
        raise HTTPException(status_code=400, detail="A site is required to register a shipment")
    if not ctx.can_access_site(site_id):
        raise HTTPException(status_code=403, detail="You do not have access to this site")
    if not db.query(Site).filter(Site.id == site_id).first():
        raise HTTPException(status_code=404, detail="Site not found")

    units = register_shipment(
        db,
        actor=current_user,
        site_id=site_id,
        drug_code=payload.drug_code,
        lot_number=payload.lot_number,
        expiration_date=payload.expiration_date,
        quantity_per_unit=payload.quantity_per_unit,
        unit_description=payload.unit_description,
        count=payload.count,
    )
    commit_or_raise(db, "Failed to register shipment.")
    for unit in units:
        db.refresh(unit)
    return [DrugUnitResponse.model_validate(u) for u in units]


@router.put("/bulk-update-site/{site_id}", response_model=BulkSiteStatusResult)
def bulk_update_site_endpoint(
    site_id: int,
    payload: BulkSiteStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles([RoleName.ADMIN])),
) -> BulkSiteStatusResult:
    """
    Administrative override: force every unit at the site to one status.
    Every changed unit is audited and flagged for review.
    """
    if not db.query(Site).filter(Site.id == site_id).first():
        raise HTTPException(status_code=404, detail="Site not found")
    try:
        updated, skipped = bulk_override_site(
            db,
            actor=current_user,
            site_id=site_id,
            target=payload.status,
            reason=payload.reason,
        )
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    commit_or_raise(db, "Failed to update drug units.")
    for unit in updated:
        db.refresh(unit)
    return BulkSiteStatusResult(
        updated=len(updated),
        skipped=len(skipped),
        units=[DrugUnitResponse.model_validate(u) for u in updated],
    )


@router.post("/destroy", response_model=list[DrugUnitResponse])
def destroy_drug_units_endpoint(
    payload: DestroyRequest,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
    current_user: User = Depends(require_roles(INVENTORY_ROLES)),
) -> list[DrugUnitResponse]:
    """
    Returned -> Destroyed, signed with the user's re-entered credentials.
    """
    for unit_id in payload.drug_unit_ids:
        _load_unit(db, ctx, unit_id)

    try:
        units = destroy_units(
            db,
            actor=current_user,
            unit_ids=payload.drug_unit_ids,
            username=payload.signature.username,
            password=payload.signature.password,
            signature_meaning=payload.signature.meaning,
            destruction_date=payload.destruction_date,
            reason=payload.reason,
        )
    except SignatureVerificationError as e:
        db.rollback()
        raise HTTPException(status_code=403, detail=str(e))
    except InvalidTransitionError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(e))

    commit_or_raise(db, "Failed to destroy drug units.")
    for unit in units:
        db.refresh(unit)
    return [DrugUnitResponse.model_validate(u) for u in units]


@router.get("/{unit_id}", response_model=DrugUnitResponse)
def get_drug_unit_endpoint(
    unit_id: int,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
) -> DrugUnitResponse:
    return DrugUnitResponse.model_validate(_load_unit(db, ctx, unit_id))


@router.put("/{unit_id}", response_model=DrugUnitResponse)
def update_drug_unit_endpoint(
    unit_id: int,
    payload: DrugUnitStatusUpdate,
    db: Session = Depends(get_db),
    ctx: AccessContext = Depends(get_access_context),
    current_user: User = Depends(require_roles(CLINICAL_ROLES)),
) -> DrugUnitResponse:
    """
    Single-unit status change through the transition table. Dispense and
    return go through /accountability; destroy through /destroy.
    """
    unit = _load_unit(db, ctx, unit_id, for_update=True)
    if payload.version is not None and payload.version != unit.version:
        raise HTTPException(
            status_code=409,
            detail="The drug unit was modified by another user. Reload and try again.",
        )

    try:
        update_status(
            db,
            actor=current_user,
            unit=unit,
            target=payload.status,
            reason=payload.reason,
        )
    except (InvalidTransitionError, AccountabilityRequiredError) as e:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(e))
    except SignatureVerificationError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    commit_or_raise(db, "Failed to update drug unit.")
    db.refresh(unit)
    return DrugUnitResponse.model_validate(unit)
