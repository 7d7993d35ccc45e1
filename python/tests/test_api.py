"""
API endpoint tests for the FastAPI Shelter Matching API

Uses FastAPI's TestClient against an app built by create_app() around the
in-memory SQLite provider from conftest.py.
"""

import uuid
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from api.server import create_app
from database.monitoring import DatastoreHealth
from database.repositories import PersonRepository
from matching.registry import RegistryService

API_KEY = "test-key"
STAFF = {"X-API-Key": API_KEY}


@pytest.fixture
def app(db_provider, config):
    return create_app(db_provider=db_provider, config=config, api_key=API_KEY)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def register(client, shelter_id):
    def _register(**overrides):
        body = {
            "shelter_id": str(shelter_id),
            "full_name": "Nimal Perera",
            "age": 34,
            "gender": "MALE",
        }
        body.update(overrides)
        return client.post("/api/v1/persons", json=body, headers=STAFF)
    return _register


@pytest.fixture
def file_report(client):
    def _file(owner="anon-1", **overrides):
        body = {
            "full_name": "Nimal Perera",
            "age": 34,
            "gender": "MALE",
            "last_seen_location": "Kaduwela bridge",
            "reporter_name": "Kamala Perera",
            "reporter_phone": "0771234567",
        }
        body.update(overrides)
        headers = {"X-Anonymous-User-Id": owner} if owner else {}
        return client.post("/api/v1/missing", json=body, headers=headers)
    return _file


def assert_error(response, status_code, code):
    assert response.status_code == status_code
    error = response.json()["error"]
    assert error["code"] == code
    assert error["message"]
    assert error["timestamp"]
    return error


# ============================================
# REGISTRATION
# ============================================

class TestRegistration:
    """POST /api/v1/persons"""

    def test_registers_without_matches(self, register, shelter_id):
        response = register()

        assert response.status_code == 201
        data = response.json()
        assert data["shelter_id"] == str(shelter_id)
        assert data["full_name"] == "Nimal Perera"
        assert data["matches"] == []

    def test_returns_potential_matches(self, register, file_report):
        report = file_report().json()

        data = register().json()

        assert len(data["matches"]) == 1
        match = data["matches"][0]
        assert match["missing_report_id"] == report["id"]
        assert match["poster_code"] == report["poster_code"]
        assert match["match_score"] == 100
        assert match["confidence"]["name"] == 100.0
        assert match["reasons"][0] == "Name similarity: 100%"

    def test_matching_failure_still_registers(self, db_provider, register, file_report):
        file_report()
        error = OperationalError("SELECT", {}, Exception("connection refused"))

        with patch("matching.candidate_finder.MissingReportRepository.list_open", side_effect=error):
            response = register()

        assert response.status_code == 201
        assert response.json()["matches"] == []
        with db_provider.session_scope() as session:
            assert PersonRepository(session).get_by_id(uuid.UUID(response.json()["person_id"])) is not None

    def test_unknown_shelter(self, register):
        assert_error(register(shelter_id=str(uuid.uuid4())), 404, "NOT_FOUND")

    def test_blocked_characters(self, register):
        error = assert_error(register(full_name="<script>alert(1)</script>"), 422, "BLOCKED_CHARACTERS")
        assert error["field"] == "full_name"
        assert error["suggestion"]

    def test_schema_validation(self, register):
        error = assert_error(register(age=150), 422, "VALIDATION_ERROR")
        assert error["field"] == "age"

    def test_invalid_nic(self, register):
        error = assert_error(register(nic="12345"), 422, "INVALID_NIC_FORMAT")
        assert error["field"] == "nic"

    def test_check_duplicates(self, client, register, shelter_id):
        register()

        response = client.post(
            "/api/v1/persons/check-duplicates",
            json={"shelter_id": str(shelter_id), "names": ["NIMAL PERERA", "Sunil Shantha"]},
            headers=STAFF,
        )

        assert response.status_code == 200
        assert response.json() == {"duplicates": ["NIMAL PERERA"]}

    def test_bulk_registers_with_matches(self, client, shelter_id, file_report):
        report = file_report().json()

        response = client.post("/api/v1/persons/bulk", json={
            "shelter_id": str(shelter_id),
            "persons": [
                {"full_name": "Nimal Perera", "age": 34, "gender": "MALE"},
                {"full_name": "Kamala Silva", "age": 29, "gender": "FEMALE"},
            ],
        }, headers=STAFF)

        assert response.status_code == 201
        data = response.json()
        assert data["count"] == 2
        assert [p["full_name"] for p in data["persons"]] == ["Nimal Perera", "Kamala Silva"]
        assert [m["missing_report_id"] for m in data["persons"][0]["matches"]] == [report["id"]]
        assert data["persons"][1]["matches"] == []

    def test_bulk_invalid_entry_named(self, client, shelter_id):
        response = client.post("/api/v1/persons/bulk", json={
            "shelter_id": str(shelter_id),
            "persons": [
                {"full_name": "Nimal Perera", "age": 34, "gender": "MALE"},
                {"full_name": "Kamala Silva", "age": 29, "gender": "FEMALE", "nic": "12345"},
            ],
        }, headers=STAFF)

        error = assert_error(response, 422, "INVALID_NIC_FORMAT")
        assert error["field"] == "persons[1].nic"

    def test_bulk_schema_validation(self, client, shelter_id):
        response = client.post("/api/v1/persons/bulk", json={
            "shelter_id": str(shelter_id),
            "persons": [{"full_name": "Nimal Perera", "age": 150, "gender": "MALE"}],
        }, headers=STAFF)

        error = assert_error(response, 422, "VALIDATION_ERROR")
        assert error["field"] == "persons.0.age"

    def test_bulk_requires_key(self, client, shelter_id):
        response = client.post("/api/v1/persons/bulk", json={
            "shelter_id": str(shelter_id),
            "persons": [{"full_name": "Nimal Perera", "age": 34, "gender": "MALE"}],
        })
        assert response.status_code == 401

    def test_get_person(self, client, register):
        person_id = register(special_notes="Diabetic").json()["person_id"]

        response = client.get(f"/api/v1/persons/{person_id}", headers=STAFF)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "SHELTERED"
        assert data["person"]["id"] == person_id
        assert data["person"]["shelter"]["code"] == "GAM-001"
        assert data["health_status"] == "HEALTHY"
        assert data["special_notes"] == "Diabetic"
        assert data["missing_report"] is None

    def test_get_unknown_person(self, client):
        assert_error(client.get(f"/api/v1/persons/{uuid.uuid4()}", headers=STAFF), 404, "NOT_FOUND")


# ============================================
# SECURITY
# ============================================

class TestApiKey:
    def test_missing_key(self, client, shelter_id):
        response = client.post("/api/v1/persons", json={
            "shelter_id": str(shelter_id), "full_name": "Nimal Perera", "age": 34, "gender": "MALE",
        })
        assert_error(response, 401, "HTTP_401")

    def test_wrong_key(self, client):
        response = client.get("/api/v1/metrics/queries", headers={"X-API-Key": "nope"})
        assert_error(response, 403, "HTTP_403")

    def test_metrics_with_key(self, client):
        response = client.get("/api/v1/metrics/queries", headers=STAFF)
        assert response.status_code == 200
        assert "operations" in response.json()

    def test_public_endpoints_open(self, client):
        assert client.get("/api/v1/search", params={"query": "Nimal"}).status_code == 200
        assert client.get("/api/v1/missing").status_code == 200

    def test_dev_mode_without_key(self, db_provider, config, shelter_id):
        client = TestClient(create_app(db_provider=db_provider, config=config, api_key=""))
        response = client.post("/api/v1/persons", json={
            "shelter_id": str(shelter_id), "full_name": "Nimal Perera", "age": 34, "gender": "MALE",
        })
        assert response.status_code == 201


# ============================================
# CONFIRMATION
# ============================================

class TestConfirmMatch:
    """POST /api/v1/matches"""

    @pytest.fixture
    def pair(self, register, file_report):
        report_id = file_report().json()["id"]
        person_id = register().json()["person_id"]
        return person_id, report_id

    def confirm(self, client, person_id, report_id, confidence=95.0):
        return client.post("/api/v1/matches", json={
            "person_id": person_id,
            "missing_report_id": report_id,
            "confidence": confidence,
            "confirmed_by": "GAM-001",
        }, headers=STAFF)

    def test_confirm(self, client, pair):
        response = self.confirm(client, *pair)

        assert response.status_code == 201
        data = response.json()
        assert data["person_id"] == pair[0]
        assert data["missing_report_id"] == pair[1]
        assert data["report_status"] == "FOUND"
        assert data["confirmed_by"] == "GAM-001"

    def test_duplicate_conflicts(self, client, pair):
        self.confirm(client, *pair)
        assert_error(self.confirm(client, *pair), 409, "ALREADY_MATCHED")

    def test_unknown_report(self, client, pair):
        assert_error(self.confirm(client, pair[0], str(uuid.uuid4())), 404, "NOT_FOUND")

    def test_confidence_out_of_range(self, client, pair):
        error = assert_error(self.confirm(client, *pair, confidence=150), 422, "CONFIDENCE_OUT_OF_RANGE")
        assert error["field"] == "confidence"

    def test_confirmed_person_found_in_search(self, client, pair):
        self.confirm(client, *pair)

        data = client.get("/api/v1/search", params={"type": "name", "query": "Perera"}).json()

        assert data["total"] == 1
        result = data["results"][0]
        assert result["kind"] == "person"
        assert result["status"] == "FOUND_AND_SHELTERED"
        assert result["missing_report"]["id"] == pair[1]


# ============================================
# SEARCH
# ============================================

class TestSearch:
    """GET /api/v1/search"""

    def test_name_search(self, client, register, file_report):
        file_report(full_name="Kamal Nimal")
        register()

        response = client.get("/api/v1/search", params={"type": "name", "query": "nimal"})

        assert response.status_code == 200
        data = response.json()
        assert data["search_type"] == "name"
        assert data["total"] == 2
        kinds = {r["kind"]: r for r in data["results"]}
        assert kinds["person"]["status"] == "SHELTERED"
        assert kinds["person"]["person"]["shelter"]["code"] == "GAM-001"
        assert kinds["missing_report"]["status"] == "MISSING"
        assert kinds["missing_report"]["id"].startswith("missing-")

    def test_empty_result_is_success(self, client):
        response = client.get("/api/v1/search", params={"query": "Nobody"})
        assert response.status_code == 200
        assert response.json()["results"] == []

    def test_nic_search(self, client, register):
        register(nic="123456789V")

        upper = client.get("/api/v1/search", params={"type": "nic", "nic": "123456789V"}).json()
        lower = client.get("/api/v1/search", params={"type": "nic", "nic": "123456789v"}).json()

        assert upper["total"] == 1
        assert [r["id"] for r in upper["results"]] == [r["id"] for r in lower["results"]]

    def test_short_query(self, client):
        error = assert_error(client.get("/api/v1/search", params={"query": "N"}), 422, "QUERY_TOO_SHORT")
        assert error["field"] == "query"

    def test_unknown_type(self, client):
        assert_error(client.get("/api/v1/search", params={"type": "phone", "query": "077"}), 422, "INVALID_SEARCH_TYPE")

    def test_datastore_failure(self, client):
        error = OperationalError("SELECT", {}, Exception("connection refused"))

        with patch.object(PersonRepository, "search_by_name", side_effect=error):
            assert_error(client.get("/api/v1/search", params={"query": "Nimal"}), 503, "SEARCH_FAILED")


# ============================================
# MISSING REPORTS
# ============================================

class TestMissingReports:
    def test_file_and_lookup(self, client, file_report):
        response = file_report(nic="123456789v", last_seen_district="Colombo", last_seen_date="2025-11-28")

        assert response.status_code == 201
        report = response.json()
        assert report["status"] == "MISSING"
        assert report["nic"] == "123456789V"
        assert report["last_seen_district"] == "Colombo"

        lookup = client.get(f"/api/v1/missing/{report['poster_code'].lower()}")
        assert lookup.status_code == 200
        assert lookup.json()["id"] == report["id"]

    def test_invalid_phone(self, file_report):
        error = assert_error(file_report(reporter_phone="12345"), 422, "INVALID_PHONE")
        assert error["field"] == "reporter_phone"

    def test_unknown_poster_code(self, client):
        assert_error(client.get("/api/v1/missing/MP00000"), 404, "NOT_FOUND")

    def test_malformed_poster_code(self, client):
        assert_error(client.get("/api/v1/missing/ABC"), 422, "INVALID_POSTER_CODE")

    def test_list_open(self, client, file_report):
        for _ in range(3):
            file_report()

        data = client.get("/api/v1/missing", params={"limit": 2}).json()

        assert data["total"] == 3
        assert len(data["reports"]) == 2

    def test_owner_marks_found(self, client, file_report):
        report = file_report(owner="anon-1").json()

        response = client.patch(
            f"/api/v1/missing/{report['id']}/found",
            headers={"X-Anonymous-User-Id": "anon-1"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "FOUND"
        assert client.get("/api/v1/missing").json()["total"] == 0

    def test_non_owner_rejected(self, client, file_report):
        report = file_report(owner="anon-1").json()

        response = client.patch(
            f"/api/v1/missing/{report['id']}/found",
            headers={"X-Anonymous-User-Id": "anon-2"},
        )

        assert_error(response, 403, "NOT_REPORT_OWNER")

    def test_mark_unknown_report(self, client):
        response = client.patch(
            f"/api/v1/missing/{uuid.uuid4()}/found",
            headers={"X-Anonymous-User-Id": "anon-1"},
        )
        assert_error(response, 404, "NOT_FOUND")

    def test_my_reports(self, client, file_report):
        mine = file_report(owner="anon-1").json()
        file_report(owner="anon-2")

        response = client.get("/api/v1/user/reports", headers={"X-Anonymous-User-Id": "anon-1"})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["reports"][0]["id"] == mine["id"]

    def test_my_reports_requires_identifier(self, client):
        error = assert_error(client.get("/api/v1/user/reports"), 422, "REPORTER_ID_REQUIRED")
        assert error["field"] == "X-Anonymous-User-Id"

    def test_owner_edits_report(self, client, file_report):
        report = file_report(owner="anon-1", clothing="Blue shirt").json()

        response = client.patch(
            f"/api/v1/user/reports/{report['id']}",
            json={"age": 35, "clothing": ""},
            headers={"X-Anonymous-User-Id": "anon-1"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["age"] == 35
        assert data["clothing"] is None
        assert data["full_name"] == "Nimal Perera"
        assert data["poster_code"] == report["poster_code"]

    def test_edit_by_non_owner_rejected(self, client, file_report):
        report = file_report(owner="anon-1").json()

        response = client.patch(
            f"/api/v1/user/reports/{report['id']}",
            json={"age": 35},
            headers={"X-Anonymous-User-Id": "anon-2"},
        )

        assert_error(response, 403, "NOT_REPORT_OWNER")

    def test_edit_unknown_report(self, client):
        response = client.patch(
            f"/api/v1/user/reports/{uuid.uuid4()}",
            json={"age": 35},
            headers={"X-Anonymous-User-Id": "anon-1"},
        )
        assert_error(response, 404, "NOT_FOUND")

    def test_empty_edit_rejected(self, client, file_report):
        report = file_report(owner="anon-1").json()

        response = client.patch(
            f"/api/v1/user/reports/{report['id']}",
            json={},
            headers={"X-Anonymous-User-Id": "anon-1"},
        )
        assert_error(response, 422, "NO_CHANGES")


# ============================================
# HEALTH, HEADERS AND ERRORS
# ============================================

class TestHealth:
    def test_healthy(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"]["healthy"] is True
        assert data["version"] == "1.0.0"

    def test_degraded_still_200(self, client):
        unhealthy = DatastoreHealth(healthy=False, latency_ms=3.0, error="OperationalError")

        with patch("api.server.check_health", return_value=unhealthy):
            response = client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["database"]["error"] == "OperationalError"


class TestMiddleware:
    def test_request_id_echoed(self, client):
        response = client.get("/api/v1/health", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"
        assert int(response.headers["X-Processing-Time-MS"]) >= 0

    def test_cors_preflight(self, client):
        response = client.options("/api/v1/search", headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "GET",
        })

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"

    def test_root_redirects_to_docs(self, client):
        response = client.get("/", follow_redirects=False)
        assert response.status_code in (302, 307)
        assert response.headers["location"] == "/api/docs"

    def test_openapi_available(self, client):
        assert client.get("/api/openapi.json").status_code == 200

    def test_unhandled_error_sanitized(self, app):
        client = TestClient(app, raise_server_exceptions=False)

        with patch.object(RegistryService, "register_person", side_effect=RuntimeError("secret detail")):
            response = client.post("/api/v1/persons", json={
                "shelter_id": str(uuid.uuid4()), "full_name": "Nimal Perera", "age": 34, "gender": "MALE",
            }, headers=STAFF)

        error = assert_error(response, 500, "INTERNAL_ERROR")
        assert "secret" not in error["message"]
