# ctms/services/report_service.py
"""
Read-only reports: subject summary, site enrollment, drug accountability
and the drug master log.

Site enrollment is cached in Redis when configured (see ctms.core.redis);
without Redis every call hits the database.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from typing import Any

from sqlalchemy import case, func
from sqlalchemy.orm import Session, joinedload

from ctms.core.config import get_settings
from ctms.core.redis import cache_delete, cache_get, cache_set
from ctms.models.accountability import AccountabilityRecord
from ctms.models.drug_unit import DrugUnit, DrugUnitStatus
from ctms.models.site import Site
from ctms.models.subject import Subject, SubjectStatus
from ctms.models.visit import SubjectVisit

logger = logging.getLogger(__name__)

SITE_ENROLLMENT_CACHE_KEY = "ctms:reports:site_enrollment"


def _cache_key(site_id: int | None) -> str:
    return f"{SITE_ENROLLMENT_CACHE_KEY}:{site_id if site_id is not None else 'all'}"


def subject_summary(db: Session, *, site_id: int | None = None) -> list[Subject]:
    query = db.query(Subject).options(joinedload(Subject.site))
    if site_id is not None:
        query = query.filter(Subject.site_id == site_id)
    return query.order_by(Subject.enrollment_date.desc(), Subject.id.desc()).all()


def site_enrollment(db: Session, *, site_id: int | None = None) -> list[dict[str, Any]]:
    """
    Per-site subject totals by status.
    """
    key = _cache_key(site_id)
    cached = cache_get(key)
    if cached:
        try:
            return json.loads(cached)
        except json.JSONDecodeError:
            logger.warning("Discarding malformed cache entry %s", key)

    def status_count(status: SubjectStatus):
        return func.coalesce(func.sum(case((Subject.status == status, 1), else_=0)), 0)

    query = (
        db.query(
            Site.id,
            Site.site_number,
            Site.site_name,
            func.count(Subject.id),
            status_count(SubjectStatus.ACTIVE),
            status_count(SubjectStatus.COMPLETED),
            status_count(SubjectStatus.TERMINATED),
        )
        .outerjoin(Subject, Subject.site_id == Site.id)
        .group_by(Site.id, Site.site_number, Site.site_name)
        .order_by(Site.site_number.asc())
    )
    if site_id is not None:
        query = query.filter(Site.id == site_id)

    rows = [
        {
            "site_id": sid,
            "site_number": number,
            "site_name": name,
            "total_subjects": int(total or 0),
            "active_subjects": int(active or 0),
            "completed_subjects": int(completed or 0),
            "terminated_subjects": int(terminated or 0),
        }
        for sid, number, name, total, active, completed, terminated in query.all()
    ]

    cache_set(key, json.dumps(rows), ttl=get_settings().report_cache_ttl_seconds)
    return rows


def invalidate_site_enrollment(site_id: int | None = None) -> None:
    cache_delete(_cache_key(None))
    if site_id is not None:
        cache_delete(_cache_key(site_id))


def drug_accountability(db: Session, *, site_id: int | None = None) -> list[AccountabilityRecord]:
    query = db.query(AccountabilityRecord).options(
        joinedload(AccountabilityRecord.subject),
        joinedload(AccountabilityRecord.drug_unit),
        joinedload(AccountabilityRecord.subject_visit).joinedload(SubjectVisit.visit),
    )
    if site_id is not None:
        query = query.join(Subject, AccountabilityRecord.subject_id == Subject.id).filter(
            Subject.site_id == site_id
        )
    return query.order_by(AccountabilityRecord.created_at.desc(), AccountabilityRecord.id.desc()).all()


def _latest_record(unit: DrugUnit) -> AccountabilityRecord | None:
    records = getattr(unit, "accountability_records", None) or []
    if not records:
        return None
    return max(records, key=lambda r: r.id)


def master_log(db: Session, *, site_id: int | None = None) -> list[dict[str, Any]]:
    """
    Bottle lifecycle, one flat row per drug unit. Derived values are the
    stored ones on the latest accountability record, never recomputed here.
    """
    query = db.query(DrugUnit).options(
        joinedload(DrugUnit.site),
        joinedload(DrugUnit.subject),
        joinedload(DrugUnit.accountability_records)
        .joinedload(AccountabilityRecord.subject_visit)
        .joinedload(SubjectVisit.visit),
    )
    if site_id is not None:
        query = query.filter(DrugUnit.site_id == site_id)
    units = query.order_by(DrugUnit.created_at.desc(), DrugUnit.id.desc()).all()

    rows: list[dict[str, Any]] = []
    for unit in units:
        record = _latest_record(unit)
        visit = record.subject_visit.visit if record and record.subject_visit else None
        rows.append(
            {
                "drug_unit_id": unit.id,
                "drug_code": unit.drug_code,
                "lot_number": unit.lot_number,
                "expiration_date": unit.expiration_date,
                "quantity_per_unit": unit.quantity_per_unit,
                "status": unit.status,
                "site_id": unit.site_id,
                "site_number": unit.site.site_number if unit.site else None,
                "site_name": unit.site.site_name if unit.site else None,
                "subject_id": unit.subject_id,
                "subject_number": unit.subject.subject_number if unit.subject else None,
                "accountability_id": record.id if record else None,
                "qty_dispensed": record.qty_dispensed if record else None,
                "qty_returned": record.qty_returned if record else None,
                "pills_used": record.pills_used if record else None,
                "compliance_percentage": record.compliance_percentage if record else None,
                "days_used": record.days_used if record else None,
                "expected_pills": record.expected_pills if record else None,
                "return_date": record.return_date if record else None,
                "reconciliation_date": record.reconciliation_date if record else None,
                "dispense_date": record.created_at if record else None,
                "visit_name": visit.visit_name if visit else None,
                "visit_sequence": visit.visit_sequence if visit else None,
                "comments": record.comments if record else None,
                "assigned_date": unit.assigned_date,
                "created_at": unit.created_at,
                "updated_at": unit.updated_at,
            }
        )
    return rows


def master_log_summary(db: Session, *, site_id: int | None = None) -> dict[str, Any]:
    query = db.query(DrugUnit.status, DrugUnit.drug_code)
    if site_id is not None:
        query = query.filter(DrugUnit.site_id == site_id)
    rows = query.all()

    by_status = Counter(status for status, _ in rows)
    by_drug_code = Counter(code or "Unknown" for _, code in rows)
    return {
        "total": len(rows),
        "available": by_status.get(DrugUnitStatus.AVAILABLE, 0),
        "dispensed": by_status.get(DrugUnitStatus.DISPENSED, 0),
        "returned": by_status.get(DrugUnitStatus.RETURNED, 0),
        "destroyed": by_status.get(DrugUnitStatus.DESTROYED, 0),
        "missing": by_status.get(DrugUnitStatus.MISSING, 0),
        "by_drug_code": dict(by_drug_code),
    }
