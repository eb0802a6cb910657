"""
API Contract Tests
==================

HTTP surface: principal resolution, error bodies and the main case flow.
"""

import pytest
from fastapi.testclient import TestClient

from visa_portal.api import app, get_file_storage
from visa_portal.config import get_settings
from visa_portal.db.models import Automation, CaseEvent

from conftest import REQUIRED_TYPES


@pytest.fixture
def client(users, storage):
    app.dependency_overrides[get_file_storage] = lambda: storage
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _as(users, key):
    return {"X-User-Id": users[key].id}


def _create(client, users, key="client", **body):
    body.setdefault("visaType", "work")
    response = client.post("/api/applications", json=body, headers=_as(users, key))
    assert response.status_code == 201, response.text
    return response.json()["application"]


def _upload(client, users, key, case_id, document_type):
    return client.post(
        "/api/documents/upload",
        data={"application_id": case_id, "document_type": document_type},
        files={"file": (f"{document_type}.pdf", b"%PDF-1.4", "application/pdf")},
        headers=_as(users, key),
    )


class TestAuthentication:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_missing_header(self, client):
        response = client.get("/api/applications")
        assert response.status_code == 401
        assert response.json() == {"message": "Authentication required"}

    def test_inactive_user(self, client, users):
        response = client.get("/api/applications", headers=_as(users, "inactive"))
        assert response.status_code == 401


class TestApplicationFlow:

    def test_client_submission_scenario(self, client, users):
        case = _create(client, users)
        assert case["status"] == "draft"
        assert case["missing_documents"] == REQUIRED_TYPES

        for doc_type in REQUIRED_TYPES:
            response = _upload(client, users, "client", case["id"], doc_type)
            assert response.status_code == 201, response.text
            assert response.json()["document"]["access_url"].startswith("https://signed.test/")

        response = client.put(f"/api/applications/{case['id']}", json={"status": "submitted"}, headers=_as(users, "client"))
        assert response.status_code == 200, response.text
        body = response.json()["application"]
        assert body["status"] == "submitted"
        assert [e["status"] for e in body["timeline"]] == ["submitted"]

        response = client.put(f"/api/applications/{case['id']}", json={"status": "approved"}, headers=_as(users, "client"))
        assert response.status_code == 403

    def test_gate_reports_missing_documents(self, client, users):
        case = _create(client, users)
        for doc_type in REQUIRED_TYPES[:-1]:
            _upload(client, users, "client", case["id"], doc_type)

        response = client.put(f"/api/applications/{case['id']}", json={"status": "under_review"}, headers=_as(users, "admin"))

        assert response.status_code == 400
        assert response.json()["missingDocuments"] == ["tax_financials"]
        current = client.get(f"/api/applications/{case['id']}", headers=_as(users, "admin")).json()["application"]
        assert current["status"] == "draft"

    def test_coordinator_replaces_passport(self, client, users):
        case = _create(client, users)
        _upload(client, users, "client", case["id"], "passport")
        _upload(client, users, "client", case["id"], "visas")

        response = _upload(client, users, "coordinator", case["id"], "passport")
        assert response.status_code == 201
        new_id = response.json()["document"]["id"]

        current = client.get(f"/api/applications/{case['id']}", headers=_as(users, "admin")).json()["application"]
        passports = [d for d in current["documents"] if d["document_type"] == "passport"]
        assert [d["id"] for d in passports] == [new_id]
        assert len(current["documents"]) == 2

    def test_oversized_upload_rejected(self, client, users, storage, monkeypatch):
        monkeypatch.setenv("MAX_FILE_SIZE_BYTES", "16")
        get_settings.cache_clear()
        try:
            case = _create(client, users)
            response = client.post(
                "/api/documents/upload",
                data={"application_id": case["id"], "document_type": "passport"},
                files={"file": ("passport.pdf", b"x" * 4096, "application/pdf")},
                headers=_as(users, "client"),
            )
        finally:
            get_settings.cache_clear()

        assert response.status_code == 400
        assert response.json() == {"message": "File too large (max 16 bytes)"}
        assert storage.objects == {}

    def test_my_application(self, client, users):
        assert client.get("/api/applications/my-application", headers=_as(users, "client")).json() == {"application": None}
        case = _create(client, users)
        mine = client.get("/api/applications/my-application", headers=_as(users, "client")).json()["application"]
        assert mine["id"] == case["id"]

    def test_listing_scoped_by_role(self, client, users):
        _create(client, users, "client")
        _create(client, users, "client2")

        own = client.get("/api/applications", headers=_as(users, "client")).json()
        everything = client.get("/api/applications", headers=_as(users, "admin")).json()

        assert own["pagination"]["total"] == 1
        assert everything["pagination"]["total"] == 2
        assert everything["pagination"]["limit"] == 10

    def test_forbidden_and_not_found_bodies(self, client, users):
        case = _create(client, users)
        response = client.get(f"/api/applications/{case['id']}", headers=_as(users, "client2"))
        assert response.status_code == 403
        assert response.json() == {"message": "Access denied"}
        assert client.get("/api/applications/missing", headers=_as(users, "admin")).status_code == 404

    def test_invalid_payload_is_400(self, client, users):
        response = client.post("/api/applications", json={"visaType": "space"}, headers=_as(users, "client"))
        assert response.status_code == 400

    def test_notes_and_delete(self, client, users, storage):
        case = _create(client, users)
        _upload(client, users, "client", case["id"], "passport")

        response = client.post(f"/api/applications/{case['id']}/notes", json={"content": "Called client"}, headers=_as(users, "client"))
        assert response.status_code == 201
        assert response.json()["note"]["content"] == "Called client"

        assert client.delete(f"/api/applications/{case['id']}", headers=_as(users, "manager")).status_code == 403
        assert client.delete(f"/api/applications/{case['id']}", headers=_as(users, "admin")).status_code == 200
        assert len(storage.deleted) == 1

    def test_case_created_automation_runs(self, client, users, db):
        db.add(Automation(
            name="welcome",
            trigger_type=CaseEvent.CASE_CREATED,
            trigger_conditions={},
            actions=[{"type": "add_note", "content": "Welcome"}],
        ))
        db.commit()

        case = _create(client, users)
        current = client.get(f"/api/applications/{case['id']}", headers=_as(users, "client")).json()["application"]
        assert [n["content"] for n in current["notes"]] == ["Welcome"]


class TestAssignmentsAndRequests:

    def test_assign_manager(self, client, users):
        case = _create(client, users)
        response = client.post(
            "/api/assignments",
            json={"application_id": case["id"], "manager_id": users["manager"].id},
            headers=_as(users, "coordinator"),
        )
        assert response.status_code == 200, response.text
        body = response.json()["application"]
        assert body["assigned_manager"]["id"] == users["manager"].id
        assert body["assigned_coordinator"]["id"] == users["coordinator"].id
        assert body["timeline"][-1]["note"] == "Assigned to manager: Eve Manager"

    def test_assign_unknown_manager(self, client, users):
        case = _create(client, users)
        response = client.post(
            "/api/assignments",
            json={"application_id": case["id"], "manager_id": users["coordinator"].id},
            headers=_as(users, "admin"),
        )
        assert response.status_code == 404

    def test_workload(self, client, users):
        response = client.get("/api/assignments/workload", headers=_as(users, "manager"))
        assert response.status_code == 200
        assert len(response.json()["workload"]) == 2
        assert client.get("/api/assignments/coordinators", headers=_as(users, "client")).status_code == 403

    def test_document_request_round(self, client, users):
        case = _create(client, users)
        response = client.post(
            "/api/document-requests",
            json={"application_id": case["id"], "document_type": "passport", "message": "Scan both pages"},
            headers=_as(users, "admin"),
        )
        assert response.status_code == 201, response.text

        listed = client.get("/api/document-requests", headers=_as(users, "client")).json()["requests"]
        assert [(r["document_type"], r["message"]) for r in listed] == [("passport", "Scan both pages")]
        assert listed[0]["created_by"]["name"] == "Gil Admin"


class TestAdministration:

    def test_users_listing_and_toggle(self, client, users):
        listed = client.get("/api/users", headers=_as(users, "coordinator")).json()
        assert listed["pagination"]["total"] == 3

        response = client.patch(f"/api/users/{users['client2'].id}/status", headers=_as(users, "admin"))
        assert response.status_code == 200
        assert response.json()["user"]["is_active"] is False

    def test_update_and_delete_user(self, client, users):
        response = client.put(f"/api/users/{users['client2'].id}", json={"name": "Benjamin"}, headers=_as(users, "manager"))
        assert response.json()["user"]["name"] == "Benjamin"

        assert client.delete(f"/api/users/{users['client2'].id}", headers=_as(users, "manager")).status_code == 403
        assert client.delete(f"/api/users/{users['client2'].id}", headers=_as(users, "admin")).status_code == 200

    def test_stats(self, client, users):
        _create(client, users)
        data = client.get("/api/admin/stats", headers=_as(users, "admin")).json()
        assert data["cases"]["total"] == 1
        assert data["recent_cases"][0]["status"] == "draft"
        assert client.get("/api/admin/stats", headers=_as(users, "client")).status_code == 403
