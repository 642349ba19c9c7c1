import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ctms.api.v1.endpoints.auth import get_current_user
from ctms.core.database import get_db
from ctms.models.audit_log import AuditAction
from ctms.models.user import User
from ctms.schemas.user import UserProfileUpdate, UserResponse
from ctms.services.audit_service import record_audit

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/profile", response_model=UserResponse)
def get_profile(current_user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.model_validate(current_user)


@router.put("/profile", response_model=UserResponse)
def update_profile(
    payload: UserProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> UserResponse:
    old_email = current_user.email
    current_user.email = str(payload.email)
    record_audit(
        db,
        actor=current_user,
        action=AuditAction.UPDATE,
        table_name="users",
        record_id=current_user.id,
        old_values={"email": old_email},
        new_values={"email": current_user.email},
    )
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to update profile for user_id=%s", current_user.id)
        raise HTTPException(status_code=500, detail="Failed to update profile.")
    db.refresh(current_user)
    return UserResponse.model_validate(current_user)
