from ctms.models.audit_log import AuditAction, AuditLogEntry
from ctms.models.user import RoleName

from tests.helpers import auth_headers


def _enroll_payload(**overrides):
    payload = {
        "subject_number": "1384-010",
        "dob": "1975-02-03",
        "sex": "Male",
        "consent_date": "2024-03-01",
        "enrollment_date": "2024-03-04T00:00:00Z",
    }
    payload.update(overrides)
    return payload


def test_enroll_defaults_to_user_site(client, db, visits, coordinator, site_a):
    response = client.post("/api/subjects", json=_enroll_payload(), headers=auth_headers(coordinator))
    assert response.status_code == 201
    body = response.json()
    assert body["site_id"] == site_a.id
    assert body["status"] == "Active"
    assert body["enrollment_date"] == "2024-03-04"
    assert [v["visit_sequence"] for v in body["visits"]] == [0, 1, 2, 3, 4, 5]

    entry = db.query(AuditLogEntry).filter(AuditLogEntry.table_name == "subjects").one()
    assert entry.action == AuditAction.CREATE
    assert entry.username == "coordinator1384"


def test_enroll_other_site_forbidden(client, visits, coordinator, site_b):
    response = client.post(
        "/api/subjects",
        json=_enroll_payload(site_id=site_b.id),
        headers=auth_headers(coordinator),
    )
    assert response.status_code == 403


def test_enroll_duplicate_number(client, visits, coordinator, subject):
    response = client.post(
        "/api/subjects",
        json=_enroll_payload(subject_number="1384-001"),
        headers=auth_headers(coordinator),
    )
    assert response.status_code == 409


def test_enroll_bad_date(client, visits, coordinator):
    response = client.post(
        "/api/subjects",
        json=_enroll_payload(consent_date="2024-13-40"),
        headers=auth_headers(coordinator),
    )
    assert response.status_code == 422


def test_monitor_cannot_enroll(client, visits, monitor):
    response = client.post("/api/subjects", json=_enroll_payload(), headers=auth_headers(monitor))
    assert response.status_code == 403


def test_list_is_site_scoped(client, make_subject, site_a, site_b, coordinator, admin):
    make_subject("1384-001", site_a)
    make_subject("1385-001", site_b)

    mine = client.get("/api/subjects", headers=auth_headers(coordinator)).json()
    assert [s["subject_number"] for s in mine] == ["1384-001"]
    assert mine[0]["next_visit"]["visit_name"] == "Visit 2"

    everyone = client.get("/api/subjects", headers=auth_headers(admin)).json()
    assert {s["subject_number"] for s in everyone} == {"1384-001", "1385-001"}

    assert client.get(f"/api/subjects?site={site_b.id}", headers=auth_headers(coordinator)).status_code == 403


def test_user_without_site_is_refused(client, make_user, subject):
    orphan = make_user("floating", RoleName.DOCTOR)
    assert client.get("/api/subjects", headers=auth_headers(orphan)).status_code == 403


def test_get_other_site_subject_forbidden(client, make_subject, site_b, coordinator):
    other = make_subject("1385-001", site_b)
    assert client.get(f"/api/subjects/{other.id}", headers=auth_headers(coordinator)).status_code == 403
    assert client.get("/api/subjects/9999", headers=auth_headers(coordinator)).status_code == 404


def test_terminate_subject(client, coordinator, subject):
    response = client.put(
        f"/api/subjects/{subject.id}",
        json={"status": "Terminated", "termination_date": "2024-02-20", "reason": "Adverse event"},
        headers=auth_headers(coordinator),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "Terminated"
    assert body["termination_date"] == "2024-02-20"
    assert [v["visit_sequence"] for v in body["visits"]] == [0, 1, 2, 3, 99]


def test_status_regression_conflict(client, coordinator, subject):
    headers = auth_headers(coordinator)
    client.put(f"/api/subjects/{subject.id}", json={"status": "Completed"}, headers=headers)
    response = client.put(f"/api/subjects/{subject.id}", json={"status": "Active"}, headers=headers)
    assert response.status_code == 409


def test_record_visit(client, db, coordinator, subject):
    detail = client.get(f"/api/subjects/{subject.id}", headers=auth_headers(coordinator)).json()
    visit_2 = next(v for v in detail["visits"] if v["visit_sequence"] == 2)

    response = client.put(
        f"/api/subjects/{subject.id}/visits/{visit_2['id']}",
        json={"actual_date": "2024-02-08"},
        headers=auth_headers(coordinator),
    )
    assert response.status_code == 200
    assert response.json()["status"] == "Completed"
    assert response.json()["in_window"] is True

    early = client.put(
        f"/api/subjects/{subject.id}/visits/{visit_2['id']}",
        json={"actual_date": "2023-12-01"},
        headers=auth_headers(coordinator),
    )
    assert early.status_code == 400
