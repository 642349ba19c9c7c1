from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ctms.models.base import Base, value_enum
from ctms.models.site import Site
from ctms.utils.datetime_utils import utc_now


class RoleName(str, PyEnum):
    ADMIN = "admin"
    COORDINATOR = "coordinator"
    MONITOR = "monitor"
    AUDITOR = "auditor"
    DOCTOR = "doctor"


# Roles allowed to dispense, return and edit subject data
CLINICAL_ROLES = (RoleName.ADMIN, RoleName.COORDINATOR, RoleName.DOCTOR)

# Roles allowed to read the audit trail
AUDIT_ROLES = (RoleName.ADMIN, RoleName.AUDITOR, RoleName.MONITOR)


class User(Base):
    """
    System account.

    - admin: sees every site.
    - everyone else: scoped to site_id on every list endpoint.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Authentication
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    role: Mapped[RoleName] = mapped_column(
        value_enum(RoleName, "user_role_enum"),
        nullable=False,
    )

    site_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("sites.id", ondelete="SET NULL"),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
        doc="If false, user cannot login. Use this instead of hard delete.",
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=utc_now,
    )

    # Relationships
    site: Mapped["Site"] = relationship("Site")

    @property
    def is_admin(self) -> bool:
        return self.role == RoleName.ADMIN
