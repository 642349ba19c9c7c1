"""
Common date/time utility functions for consistent date handling across the application.

Storage: timestamps are stored in UTC; clinical dates (dose dates, visit dates,
return dates) are plain calendar dates with no time component.

Calendar dates must never round-trip through a timezone-aware datetime: a
"2024-12-14" parsed as UTC midnight and rendered in a negative-offset zone
becomes the 13th. parse_calendar_date() only ever looks at the date part.
"""

from datetime import date, datetime, timezone


def as_utc(dt: datetime) -> datetime:
    """
    Convert dt to tz-aware UTC.
    If dt is naive, we treat it as UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_now() -> datetime:
    """
    Get current UTC datetime.
    """
    return datetime.now(timezone.utc)


def utc_today() -> date:
    return utc_now().date()


def parse_calendar_date(value: str | date | datetime | None) -> date | None:
    """
    Parse a calendar date from "YYYY-MM-DD" or an ISO timestamp
    ("2024-12-14T00:00:00Z"), keeping only the date part.

    Raises ValueError for malformed input.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    raw = value.strip()
    if not raw:
        return None
    return date.fromisoformat(raw.split("T")[0])


def days_between_inclusive(first: date, last: date) -> int:
    """
    Number of calendar days from first to last, counting both ends.
    first == last -> 1.
    """
    return (last - first).days + 1
