# ctms/models/drug_unit.py
from __future__ import annotations

from datetime import date, datetime
from enum import Enum as PyEnum
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, ForeignKey, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ctms.models.base import Base, value_enum
from ctms.models.site import Site
from ctms.models.subject import Subject
from ctms.utils.datetime_utils import utc_now

if TYPE_CHECKING:
    from ctms.models.accountability import AccountabilityRecord

DEFAULT_QUANTITY_PER_UNIT = 30


class DrugUnitStatus(str, PyEnum):
    AVAILABLE = "Available"
    DISPENSED = "Dispensed"
    RETURNED = "Returned"
    DESTROYED = "Destroyed"
    MISSING = "Missing"


class DrugUnit(Base):
    """
    One unit of investigational product (e.g. one bottle).

    Status and subject assignment stay consistent:
    Dispensed units reference a subject, Available units do not.
    Status changes go through ctms.services.drug_unit_service.
    """

    __tablename__ = "drug_units"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    drug_code: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    lot_number: Mapped[str] = mapped_column(String(50), nullable=False)
    expiration_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    quantity_per_unit: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_QUANTITY_PER_UNIT,
        server_default=text(str(DEFAULT_QUANTITY_PER_UNIT)),
        doc="Pill count in the unit.",
    )
    unit_description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[DrugUnitStatus] = mapped_column(
        value_enum(DrugUnitStatus, "drug_unit_status_enum"),
        nullable=False,
        default=DrugUnitStatus.AVAILABLE,
        server_default=text("'Available'"),
        index=True,
    )

    site_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("sites.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    subject_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("subjects.id", ondelete="SET NULL"),
        nullable=True,
    )
    assigned_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Optimistic locking counter; a stale write raises StaleDataError.
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default=text("1"),
    )

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

    site: Mapped["Site"] = relationship("Site")
    subject: Mapped["Subject"] = relationship("Subject")
    accountability_records: Mapped[list["AccountabilityRecord"]] = relationship(
        "AccountabilityRecord",
        back_populates="drug_unit",
    )

    __mapper_args__ = {"version_id_col": version}
