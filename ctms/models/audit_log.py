# ctms/models/audit_log.py
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from ctms.models.base import Base, value_enum


class AuditAction(str, PyEnum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    DISPENSE = "DISPENSE"
    RETURN = "RETURN"
    DESTROY = "DESTROY"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    VIEW = "VIEW"


AUDITED_TABLES = (
    "subjects",
    "drug_units",
    "accountability",
    "sites",
    "users",
    "subject_visits",
)


class AuditLogEntry(Base):
    """
    Append-only record of who changed what.
    Never updated or deleted in normal operation.
    """

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    username: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        doc="Denormalized so entries stay readable after a user is removed.",
    )

    action: Mapped[AuditAction] = mapped_column(
        value_enum(AuditAction, "audit_action_enum"),
        nullable=False,
        index=True,
    )
    table_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    record_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)

    old_values: Mapped[str | None] = mapped_column(Text, nullable=True, doc="JSON snapshot of old values")
    new_values: Mapped[str | None] = mapped_column(Text, nullable=True, doc="JSON snapshot of new values")
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True, doc="Reason for change (user-provided)")
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
