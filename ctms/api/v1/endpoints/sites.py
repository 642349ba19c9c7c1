from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ctms.api.v1.endpoints.auth import get_current_user
from ctms.core.database import get_db
from ctms.models.site import Site
from ctms.models.user import User
from ctms.schemas.site import SiteResponse

router = APIRouter()


@router.get("", response_model=list[SiteResponse])
def list_sites(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[SiteResponse]:
    sites = db.query(Site).order_by(Site.site_number.asc()).all()
    return [SiteResponse.model_validate(s) for s in sites]


@router.get("/{site_id}", response_model=SiteResponse)
def get_site(
    site_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> SiteResponse:
    site = db.query(Site).filter(Site.id == site_id).first()
    if not site:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Site not found")
    return SiteResponse.model_validate(site)
