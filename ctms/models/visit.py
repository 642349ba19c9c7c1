# ctms/models/visit.py
from datetime import date, datetime
from enum import Enum as PyEnum

from sqlalchemy import Date, DateTime, ForeignKey, Integer, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ctms.models.base import Base, value_enum
from ctms.models.subject import Subject
from ctms.utils.datetime_utils import utc_now

# Protocol visit sequences with special handling
ENROLLMENT_SEQUENCES = (0, 1)
EARLY_TERMINATION_SEQUENCE = 99
LAST_SEQUENCE_BEFORE_TERMINATION_CUTOFF = 3


class SubjectVisitStatus(str, PyEnum):
    SCHEDULED = "Scheduled"
    COMPLETED = "Completed"


class Visit(Base):
    """
    Protocol-level visit template. Static reference data.
    """

    __tablename__ = "visits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    visit_name: Mapped[str] = mapped_column(String(100), nullable=False)
    visit_sequence: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    expected_offset_days: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default=text("0"),
        doc="Days after enrollment the visit is expected.",
    )
    expected_range_days: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default=text("0"),
        doc="Allowed +/- tolerance around the expected date.",
    )


class SubjectVisit(Base):
    """
    A scheduled occurrence of a Visit for a specific Subject.
    """

    __tablename__ = "subject_visits"
    __table_args__ = (
        UniqueConstraint("subject_id", "visit_id", name="uq_subject_visits_subject_visit"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    subject_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("subjects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    visit_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("visits.id", ondelete="RESTRICT"),
        nullable=False,
    )

    expected_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    actual_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[SubjectVisitStatus] = mapped_column(
        value_enum(SubjectVisitStatus, "subject_visit_status_enum"),
        nullable=False,
        default=SubjectVisitStatus.SCHEDULED,
        server_default=text("'Scheduled'"),
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

    visit: Mapped["Visit"] = relationship("Visit")
    subject: Mapped["Subject"] = relationship("Subject", backref="subject_visits")
