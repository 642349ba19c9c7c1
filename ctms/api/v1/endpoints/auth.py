import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ctms.core.config import get_settings
from ctms.core.database import get_db
from ctms.core.security import decode_token
from ctms.models.audit_log import AuditAction
from ctms.models.user import User
from ctms.schemas.auth import LoginRequest, LoginUser, TokenResponse
from ctms.schemas.user import UserResponse
from ctms.services.auth_service import (
    AuthenticationError,
    InactiveUserError,
    authenticate_user,
    issue_access_token_for_user,
    record_session_event,
)

router = APIRouter()
logger = logging.getLogger(__name__)

settings = get_settings()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.api_prefix}/auth/login")


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post("/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> TokenResponse:
    """
    Username/password login. Returns a bearer token and the user's identity.
    """
    try:
        user = authenticate_user(db, payload)
    except AuthenticationError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except InactiveUserError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    token = issue_access_token_for_user(user)

    try:
        record_session_event(db, user=user, action=AuditAction.LOGIN, ip_address=client_ip(request))
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to audit login for user_id=%s", user.id)
        raise HTTPException(status_code=500, detail="Failed to log in.")

    logger.info("User %s logged in", user.username)
    return TokenResponse(
        token=token,
        user=LoginUser(
            user_id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            site_id=user.site_id,
        ),
    )


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """
    Dependency to retrieve the current user from a JWT bearer token.
    """
    try:
        payload = decode_token(token)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        )

    user_id = payload.get("sub")
    if not user_id or not str(user_id).isdigit():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    user = db.query(User).filter(User.id == int(user_id)).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )

    return user


@router.post("/logout")
def logout(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    """
    Tokens are stateless; logout only records the event.
    """
    try:
        record_session_event(db, user=current_user, action=AuditAction.LOGOUT, ip_address=client_ip(request))
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to audit logout for user_id=%s", current_user.id)
        raise HTTPException(status_code=500, detail="Failed to log out.")
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=UserResponse)
def read_current_user(
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    """
    Return the current authenticated user.
    """
    return UserResponse.model_validate(current_user)
