# ctms/core/access_context.py
from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from ctms.api.v1.endpoints.auth import get_current_user
from ctms.core.database import get_db
from ctms.models.site import Site
from ctms.models.user import User


class AccessDeniedError(Exception):
    pass


class AccessContext:
    """
    Wraps the current user for site-scoped operations.

    - admin: sees every site; site_id is None unless the user has one.
    - everyone else: every read and write is limited to user.site_id.
    """

    def __init__(self, user: User, site: Site | None = None):
        self.user = user
        self.site = site

    @property
    def is_admin(self) -> bool:
        return self.user.is_admin

    @property
    def site_id(self) -> int | None:
        return self.user.site_id

    def scoped_site_id(self, requested_site_id: int | None = None) -> int | None:
        """
        Site filter to apply to a list query.
        Admins get what they asked for (None = all sites).
        """
        if self.is_admin:
            return requested_site_id
        if requested_site_id is not None and requested_site_id != self.site_id:
            raise AccessDeniedError("You do not have access to this site")
        return self.site_id

    def can_access_site(self, site_id: int | None) -> bool:
        return self.is_admin or (site_id is not None and site_id == self.site_id)

    def ensure_site_access(self, site_id: int | None) -> None:
        if not self.can_access_site(site_id):
            raise AccessDeniedError("You do not have access to this site")


def get_access_context(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AccessContext:
    """
    Resolve the caller's site.

    Non-admin users must be assigned to a site; there is nothing they could
    see otherwise.
    """
    if current_user.is_admin:
        site = None
        if current_user.site_id is not None:
            site = db.query(Site).filter(Site.id == current_user.site_id).first()
        return AccessContext(user=current_user, site=site)

    if current_user.site_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Site-scoped operation requires a user assigned to a site.",
        )

    site = db.query(Site).filter(Site.id == current_user.site_id).first()
    if not site:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Site not found.",
        )

    return AccessContext(user=current_user, site=site)
