# ctms/models/accountability.py
from datetime import date, datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ctms.models.base import Base, value_enum
from ctms.models.drug_unit import DrugUnit
from ctms.models.subject import Subject
from ctms.models.visit import SubjectVisit
from ctms.utils.datetime_utils import utc_now


class ReturnStatus(str, PyEnum):
    RETURNED = "RETURNED"
    NOT_RETURNED = "NOT_RETURNED"
    WASTED = "WASTED"
    LOST = "LOST"
    DESTROYED = "DESTROYED"


class AccountabilityRecord(Base):
    """
    Dispense/return ledger entry: one drug unit, one subject, one subject visit.

    Created at dispense time; return fields and the derived compliance
    fields are filled when the return is recorded. Later edits are
    administrative corrections, each audited with a reason.
    """

    __tablename__ = "accountability"
    __table_args__ = (
        CheckConstraint("qty_dispensed >= 0", name="ck_accountability_qty_dispensed_non_negative"),
        CheckConstraint(
            "qty_returned IS NULL OR (qty_returned >= 0 AND qty_returned <= qty_dispensed)",
            name="ck_accountability_qty_returned_range",
        ),
        CheckConstraint("pills_per_day >= 1", name="ck_accountability_pills_per_day_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    subject_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("subjects.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    subject_visit_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("subject_visits.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    drug_unit_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("drug_units.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    qty_dispensed: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_returned: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Dosing
    date_of_first_dose: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_of_last_dose: Mapped[date | None] = mapped_column(Date, nullable=True)
    pills_per_day: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        server_default=text("1"),
    )

    # Return / reconciliation
    reconciliation_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    return_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    return_status: Mapped[ReturnStatus | None] = mapped_column(
        value_enum(ReturnStatus, "return_status_enum"),
        nullable=True,
    )

    # Derived by ctms.services.compliance.calculate_compliance
    days_used: Mapped[int | None] = mapped_column(Integer, nullable=True)
    expected_pills: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pills_used: Mapped[int | None] = mapped_column(Integer, nullable=True)
    compliance_percentage: Mapped[float | None] = mapped_column(
        Numeric(8, 2, asdecimal=False),
        nullable=True,
    )

    comments: Mapped[str | None] = mapped_column(Text, nullable=True)

    dispensed_by_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=utc_now,
    )

    subject: Mapped["Subject"] = relationship("Subject")
    subject_visit: Mapped["SubjectVisit"] = relationship("SubjectVisit")
    drug_unit: Mapped["DrugUnit"] = relationship("DrugUnit", back_populates="accountability_records")

    @property
    def is_returned(self) -> bool:
        return self.qty_returned is not None
