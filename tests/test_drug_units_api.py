from datetime import date

from ctms.models.accountability import AccountabilityRecord
from ctms.models.audit_log import AuditAction, AuditLogEntry
from ctms.models.drug_unit import DrugUnitStatus

from tests.helpers import PASSWORD, auth_headers


def test_register_shipment(client, db, coordinator, site_a):
    response = client.post(
        "/api/drug-units",
        json={"drug_code": "DRUG-A", "lot_number": "LOT-1", "expiration_date": "2030-06-30", "count": 3},
        headers=auth_headers(coordinator),
    )
    assert response.status_code == 201
    body = response.json()
    assert len(body) == 3
    assert all(u["status"] == "Available" and u["site_id"] == site_a.id for u in body)
    assert all(u["quantity_per_unit"] == 30 for u in body)
    assert db.query(AuditLogEntry).filter(AuditLogEntry.action == AuditAction.CREATE).count() == 3


def test_monitor_cannot_register_shipment(client, monitor, site_a):
    response = client.post(
        "/api/drug-units",
        json={"drug_code": "DRUG-A", "lot_number": "LOT-1"},
        headers=auth_headers(monitor),
    )
    assert response.status_code == 403


def test_list_scoped_and_filtered(client, make_units, site_a, site_b, coordinator, admin):
    make_units(site_a, 2)
    make_units(site_b, 1, drug_code="DRUG-B")

    mine = client.get("/api/drug-units", headers=auth_headers(coordinator)).json()
    assert len(mine) == 2

    drug_b = client.get("/api/drug-units?drug_code=DRUG-B", headers=auth_headers(admin)).json()
    assert len(drug_b) == 1

    assert client.get(f"/api/drug-units/site/{site_b.id}", headers=auth_headers(coordinator)).status_code == 403
    assert len(client.get(f"/api/drug-units/site/{site_b.id}", headers=auth_headers(admin)).json()) == 1


def test_status_update_follows_transition_table(client, db, coordinator, units):
    unit = units[0]
    headers = auth_headers(coordinator)

    response = client.put(f"/api/drug-units/{unit.id}", json={"status": "Returned"}, headers=headers)
    assert response.status_code == 409

    # Dispensed without a ledger entry, e.g. after an admin override
    unit.status = DrugUnitStatus.DISPENSED
    db.commit()

    response = client.put(
        f"/api/drug-units/{unit.id}",
        json={"status": "Missing", "reason": "Bottle not found at site"},
        headers=headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "Missing"
    assert body["version"] == 3


def test_dispense_through_status_endpoint_rejected(client, db, coordinator, make_units, site_a):
    expired = make_units(site_a, 1, expiration_date=date(2020, 1, 1))[0]
    response = client.put(
        f"/api/drug-units/{expired.id}",
        json={"status": "Dispensed"},
        headers=auth_headers(coordinator),
    )
    assert response.status_code == 400
    assert "/accountability" in response.json()["detail"]

    db.refresh(expired)
    assert expired.status == DrugUnitStatus.AVAILABLE
    assert expired.subject_id is None
    assert db.query(AccountabilityRecord).filter(AccountabilityRecord.drug_unit_id == expired.id).count() == 0


def test_stale_version_conflict(client, coordinator, units):
    response = client.put(
        f"/api/drug-units/{units[0].id}",
        json={"status": "Missing", "version": 5},
        headers=auth_headers(coordinator),
    )
    assert response.status_code == 409


def test_other_site_unit_forbidden(client, make_units, site_b, coordinator):
    other = make_units(site_b, 1)[0]
    assert client.get(f"/api/drug-units/{other.id}", headers=auth_headers(coordinator)).status_code == 403
    assert client.get("/api/drug-units/9999", headers=auth_headers(coordinator)).status_code == 404


def test_bulk_override_admin_only(client, db, coordinator, admin, site_a, units):
    payload = {"status": "Missing", "reason": "Site closure reconciliation"}
    assert (
        client.put(f"/api/drug-units/bulk-update-site/{site_a.id}", json=payload, headers=auth_headers(coordinator))
        .status_code
        == 403
    )

    response = client.put(
        f"/api/drug-units/bulk-update-site/{site_a.id}",
        json=payload,
        headers=auth_headers(admin),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["updated"] == 3
    assert body["review_required"] is True

    overrides = db.query(AuditLogEntry).filter(
        AuditLogEntry.action == AuditAction.UPDATE,
        AuditLogEntry.table_name == "drug_units",
    ).all()
    assert len(overrides) == 3
    assert all('"review_required": true' in e.new_values for e in overrides)


def _signature(username: str, password: str = PASSWORD) -> dict:
    return {"username": username, "password": password, "meaning": "Destruction of investigational product"}


def test_destroy_signed(client, db, coordinator, units):
    unit = units[0]
    unit.status = DrugUnitStatus.RETURNED
    db.commit()

    response = client.post(
        "/api/drug-units/destroy",
        json={"drug_unit_ids": [unit.id], "signature": _signature("coordinator1384"), "reason": "Expired stock"},
        headers=auth_headers(coordinator),
    )
    assert response.status_code == 200
    assert response.json()[0]["status"] == "Destroyed"


def test_destroy_bad_signature(client, db, coordinator, units):
    unit = units[0]
    unit.status = DrugUnitStatus.RETURNED
    db.commit()

    response = client.post(
        "/api/drug-units/destroy",
        json={"drug_unit_ids": [unit.id], "signature": _signature("coordinator1384", "wrong")},
        headers=auth_headers(coordinator),
    )
    assert response.status_code == 403
    db.refresh(unit)
    assert unit.status == DrugUnitStatus.RETURNED


def test_destroy_available_unit_conflict(client, coordinator, units):
    response = client.post(
        "/api/drug-units/destroy",
        json={"drug_unit_ids": [units[0].id], "signature": _signature("coordinator1384")},
        headers=auth_headers(coordinator),
    )
    assert response.status_code == 409


def test_master_log(client, coordinator, units):
    rows = client.get("/api/drug/master-log", headers=auth_headers(coordinator)).json()
    assert len(rows) == 3
    assert rows[0]["site_number"] == "1384"
    assert rows[0]["accountability_id"] is None

    summary = client.get("/api/drug/master-log/summary", headers=auth_headers(coordinator)).json()
    assert summary["total"] == 3
    assert summary["available"] == 3
    assert summary["by_drug_code"] == {"DRUG-A": 3}
