import logging

from sqlalchemy.orm import Session

from ctms.core.security import create_access_token, verify_password
from ctms.models.audit_log import AuditAction
from ctms.models.user import User
from ctms.schemas.auth import LoginRequest
from ctms.services.audit_service import record_audit

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    pass


class InactiveUserError(Exception):
    pass


def get_user_by_username(db: Session, username: str) -> User | None:
    return db.query(User).filter(User.username == username).first()


def authenticate_user(db: Session, login_data: LoginRequest) -> User:
    """
    Authenticate a user by username and password.
    Failed attempts go to the application log only; there is no user to audit against.
    """
    user = get_user_by_username(db, login_data.username)
    if not user or not verify_password(login_data.password, user.password_hash):
        logger.warning("Failed login attempt for username=%s", login_data.username)
        raise AuthenticationError("Invalid credentials")

    if not user.is_active:
        logger.warning("Login attempt for deactivated account username=%s", login_data.username)
        raise InactiveUserError("Account is deactivated")

    return user


def issue_access_token_for_user(user: User) -> str:
    return create_access_token(
        subject=user.id,
        username=user.username,
        role=user.role.value,
        site_id=user.site_id,
    )


def record_session_event(
    db: Session,
    *,
    user: User,
    action: AuditAction,
    ip_address: str | None = None,
) -> None:
    """
    LOGIN / LOGOUT audit entries. Committed on their own since no other
    mutation accompanies them.
    """
    record_audit(
        db,
        actor=user,
        action=action,
        table_name="users",
        record_id=user.id,
        ip_address=ip_address,
    )
    db.commit()
