import csv
import io

from ctms.models.user import RoleName

from tests.helpers import auth_headers


def test_audit_roles(client, coordinator, auditor, monitor, units):
    assert client.get("/api/audit", headers=auth_headers(coordinator)).status_code == 403
    assert client.get("/api/audit", headers=auth_headers(auditor)).status_code == 200
    assert client.get("/api/audit", headers=auth_headers(monitor)).status_code == 200


def test_list_paginates_newest_first(client, auditor, units):
    first_page = client.get("/api/audit?limit=2", headers=auth_headers(auditor)).json()
    assert first_page["total"] == 3
    assert first_page["has_more"] is True
    assert len(first_page["data"]) == 2
    ids = [e["id"] for e in first_page["data"]]
    assert ids == sorted(ids, reverse=True)

    last_page = client.get("/api/audit?limit=2&offset=2", headers=auth_headers(auditor)).json()
    assert len(last_page["data"]) == 1
    assert last_page["has_more"] is False


def test_filters(client, admin, auditor, subject, units):
    headers = auth_headers(auditor)
    by_table = client.get("/api/audit?table_name=subjects", headers=headers).json()
    assert by_table["total"] == 1
    assert by_table["data"][0]["record_id"] == str(subject.id)

    by_action = client.get("/api/audit?action=CREATE", headers=headers).json()
    assert by_action["total"] == 4

    by_user = client.get(f"/api/audit?user_id={admin.id}", headers=headers).json()
    assert by_user["total"] == 4

    assert client.get("/api/audit?action=EXPLODE", headers=headers).status_code == 422


def test_get_entry(client, auditor, units):
    entry = client.get("/api/audit?limit=1", headers=auth_headers(auditor)).json()["data"][0]
    response = client.get(f"/api/audit/{entry['id']}", headers=auth_headers(auditor))
    assert response.status_code == 200
    assert response.json()["table_name"] == "drug_units"
    assert client.get("/api/audit/99999", headers=auth_headers(auditor)).status_code == 404


def test_filter_options(client, auditor):
    body = client.get("/api/audit/filters/options", headers=auth_headers(auditor)).json()
    assert "DISPENSE" in body["actions"]
    assert "accountability" in body["tables"]


def test_csv_export(client, auditor, units):
    response = client.get("/api/audit/export/csv", headers=auth_headers(auditor))
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "audit_log_" in response.headers["content-disposition"]

    rows = list(csv.reader(io.StringIO(response.text)))
    assert rows[0][:3] == ["Timestamp", "User", "Action"]
    assert len(rows) == 4
    assert {row[2] for row in rows[1:]} == {"CREATE"}


def test_csv_export_empty(client, make_user):
    reviewer = make_user("reviewer", RoleName.ADMIN)
    response = client.get("/api/audit/export/csv?table_name=subjects", headers=auth_headers(reviewer))
    assert response.status_code == 404
