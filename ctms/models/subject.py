# ctms/models/subject.py
from datetime import date, datetime
from enum import Enum as PyEnum

from sqlalchemy import Date, DateTime, ForeignKey, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ctms.models.base import Base, value_enum
from ctms.models.site import Site
from ctms.utils.datetime_utils import utc_now


class SubjectStatus(str, PyEnum):
    ACTIVE = "Active"
    COMPLETED = "Completed"
    TERMINATED = "Terminated"


class Sex(str, PyEnum):
    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"


# Status only moves forward; Completed and Terminated are terminal.
SUBJECT_STATUS_TRANSITIONS: dict[SubjectStatus, frozenset[SubjectStatus]] = {
    SubjectStatus.ACTIVE: frozenset({SubjectStatus.COMPLETED, SubjectStatus.TERMINATED}),
    SubjectStatus.COMPLETED: frozenset(),
    SubjectStatus.TERMINATED: frozenset(),
}


class Subject(Base):
    """
    A trial participant. Belongs to exactly one site.
    """

    __tablename__ = "subjects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    subject_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    site_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("sites.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    dob: Mapped[date] = mapped_column(Date, nullable=False)
    sex: Mapped[Sex] = mapped_column(value_enum(Sex, "subject_sex_enum"), nullable=False)

    status: Mapped[SubjectStatus] = mapped_column(
        value_enum(SubjectStatus, "subject_status_enum"),
        nullable=False,
        default=SubjectStatus.ACTIVE,
        server_default=text("'Active'"),
    )

    consent_date: Mapped[date] = mapped_column(Date, nullable=False)
    enrollment_date: Mapped[date] = mapped_column(Date, nullable=False)
    termination_date: Mapped[date | None] = mapped_column(Date, nullable=True)

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
