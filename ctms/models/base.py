# ctms/models/base.py
from enum import Enum as PyEnum

from sqlalchemy import Enum
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Base class for all ORM models.
    """

    pass


def value_enum(enum_cls: type[PyEnum], name: str) -> Enum:
    """
    Enum column type that persists member *values* ("Available"),
    not member names ("AVAILABLE").
    """
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
