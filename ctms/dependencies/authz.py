# ctms/dependencies/authz.py
from typing import Iterable

from fastapi import Depends, HTTPException, status

from ctms.api.v1.endpoints.auth import get_current_user
from ctms.models.user import RoleName, User


def require_roles(required_roles: Iterable[RoleName]):
    """
    Dependency factory for role-based access.

    Usage:

    @router.post("/recalculate")
    def recalc(user = Depends(require_roles([RoleName.ADMIN]))):
        ...

    Returns the current_user if their role is one of required_roles.
    """

    required = {r.value if isinstance(r, RoleName) else str(r) for r in required_roles}

    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role.value not in required:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role permissions.",
            )
        return current_user

    return dependency
