# ctms/models/site.py
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from ctms.models.base import Base


class Site(Base):
    """
    A trial location enrolling subjects.
    Created by seeding/admin scripts; never hard-deleted in normal flow.
    """

    __tablename__ = "sites"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    site_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
        doc="External site code, e.g. '1384'.",
    )
    site_name: Mapped[str] = mapped_column(String(255), nullable=False)
    pi_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        server_default=text("'Active'"),
    )
    activated_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
