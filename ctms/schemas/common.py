# ctms/schemas/common.py
from datetime import date
from typing import Annotated, Any

from pydantic import BeforeValidator, StringConstraints

from ctms.utils.datetime_utils import parse_calendar_date


def _calendar_date(value: Any) -> Any:
    if isinstance(value, str):
        return parse_calendar_date(value)
    return value


# Accepts "YYYY-MM-DD" or an ISO timestamp; keeps only the date part.
CalendarDate = Annotated[date, BeforeValidator(_calendar_date)]

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
