# ctms/services/audit_service.py
"""
Audit trail writes and queries.

record_audit() only adds the entry to the caller's session. The entry is
committed (or rolled back) together with the mutation it describes, so a
change can never land without its audit entry.
"""

from __future__ import annotations

import csv
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from io import StringIO
from typing import Any

from sqlalchemy.orm import Query, Session

from ctms.models.audit_log import AuditAction, AuditLogEntry
from ctms.models.user import User

logger = logging.getLogger(__name__)


class AuditEntryNotFoundError(Exception):
    pass


def _json_default(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return float(value)
    return str(value)


def dump_values(values: dict[str, Any] | None) -> str | None:
    if values is None:
        return None
    return json.dumps(values, default=_json_default, sort_keys=True)


def snapshot(obj: Any, fields: tuple[str, ...] | list[str]) -> dict[str, Any]:
    """Plain-dict snapshot of selected ORM attributes for old/new values."""
    return {f: getattr(obj, f) for f in fields}


def record_audit(
    db: Session,
    *,
    actor: User | None,
    action: AuditAction,
    table_name: str,
    record_id: Any = None,
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
) -> AuditLogEntry:
    """
    Add an audit entry to the current unit of work. Does not commit.
    """
    entry = AuditLogEntry(
        user_id=actor.id if actor else None,
        username=actor.username if actor else None,
        action=action,
        table_name=table_name,
        record_id=str(record_id) if record_id is not None else None,
        old_values=dump_values(old_values),
        new_values=dump_values(new_values),
        reason=reason,
        ip_address=ip_address,
    )
    db.add(entry)
    return entry


@dataclass
class AuditFilters:
    user_id: int | None = None
    action: AuditAction | None = None
    table_name: str | None = None
    record_id: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    limit: int = 50
    offset: int = 0


def _filtered_query(db: Session, filters: AuditFilters) -> Query:
    query = db.query(AuditLogEntry)
    if filters.user_id is not None:
        query = query.filter(AuditLogEntry.user_id == filters.user_id)
    if filters.action is not None:
        query = query.filter(AuditLogEntry.action == filters.action)
    if filters.table_name:
        query = query.filter(AuditLogEntry.table_name == filters.table_name)
    if filters.record_id:
        query = query.filter(AuditLogEntry.record_id == filters.record_id)
    if filters.start_date:
        query = query.filter(AuditLogEntry.created_at >= datetime.combine(filters.start_date, time.min))
    if filters.end_date:
        # end_date is inclusive of the whole day
        query = query.filter(
            AuditLogEntry.created_at < datetime.combine(filters.end_date + timedelta(days=1), time.min)
        )
    return query


def list_audit_logs(db: Session, filters: AuditFilters) -> tuple[list[AuditLogEntry], int]:
    query = _filtered_query(db, filters)
    total = query.count()
    entries = (
        query.order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
        .offset(filters.offset)
        .limit(filters.limit)
        .all()
    )
    return entries, total


def get_audit_entry(db: Session, entry_id: int) -> AuditLogEntry:
    entry = db.query(AuditLogEntry).filter(AuditLogEntry.id == entry_id).first()
    if not entry:
        raise AuditEntryNotFoundError("Audit entry not found")
    return entry


EXPORT_COLUMNS = [
    "Timestamp",
    "User",
    "Action",
    "Table",
    "Record ID",
    "Old Values",
    "New Values",
    "Reason",
    "IP Address",
]


def export_audit_csv(entries: list[AuditLogEntry]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_COLUMNS)
    for entry in entries:
        writer.writerow(
            [
                entry.created_at.isoformat() if entry.created_at else "",
                entry.username or "",
                entry.action.value,
                entry.table_name,
                entry.record_id or "",
                entry.old_values or "",
                entry.new_values or "",
                entry.reason or "",
                entry.ip_address or "",
            ]
        )
    return output.getvalue()
