"""
Tests for the error envelope and the service endpoints.

Every error response has the shape {error, code, timestamp}.
"""
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy.exc import IntegrityError

from core.config import settings
from core.exceptions import map_integrity_error
from main import app


class TestErrorEnvelope:
    def test_unknown_route(self, client):
        response = client.get("/api/nowhere")

        assert response.status_code == 404
        body = response.json()
        assert body["code"] == "ROUTE_NOT_FOUND"
        assert body["path"] == "/api/nowhere"
        assert "timestamp" in body

    def test_missing_token(self, client):
        response = client.get("/api/activities")

        assert response.status_code == 401
        body = response.json()
        assert body["code"] == "MISSING_TOKEN"
        assert set(body) >= {"error", "code", "timestamp"}

    def test_malformed_authorization_header(self, client):
        response = client.get("/api/activities", headers={"Authorization": "Token abc"})
        assert response.json()["code"] == "INVALID_TOKEN_FORMAT"

    def test_garbage_token(self, client):
        response = client.get("/api/activities", headers={"Authorization": "Bearer not.a.jwt"})
        assert response.status_code == 401

    def test_validation_errors_are_400(self, client, athlete, headers):
        response = client.post("/api/activities", json={"name": "No type"}, headers=headers(athlete))

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        fields = {detail["field"] for detail in body["details"]}
        assert "body.type" in fields
        assert "body.startTime" in fields

    def test_bad_uuid_path(self, client, athlete, headers):
        response = client.get("/api/activities/not-a-uuid", headers=headers(athlete))
        assert response.status_code == 400

    def test_stack_trace_outside_production(self, athlete, headers):
        client = TestClient(app, raise_server_exceptions=False)
        with patch("routers.dashboard.get_overview", side_effect=RuntimeError("boom")):
            response = client.get("/api/dashboard/overview", headers=headers(athlete))

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == "INTERNAL_ERROR"
        assert body["error"] == "boom"
        assert "RuntimeError" in body["stack"]

    def test_production_hides_internal_details(self, athlete, headers):
        client = TestClient(app, raise_server_exceptions=False)
        with patch.object(settings, "ENVIRONMENT", "production"), \
                patch("routers.dashboard.get_overview", side_effect=RuntimeError("secret dsn=postgres://u:p@db")):
            response = client.get("/api/dashboard/overview", headers=headers(athlete))

        assert response.status_code == 500
        body = response.json()
        assert set(body) == {"error", "code", "timestamp"}
        assert body["error"] == "Internal server error"
        assert body["code"] == "INTERNAL_ERROR"


class TestIntegrityMapping:
    def test_unique_violation(self):
        exc = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: users.email"))
        status_code, code, _ = map_integrity_error(exc)
        assert (status_code, code) == (409, "DUPLICATE_ENTRY")

    def test_foreign_key_violation(self):
        exc = IntegrityError("INSERT", {}, Exception("FOREIGN KEY constraint failed"))
        status_code, _, _ = map_integrity_error(exc)
        assert status_code == 400

    def test_unclassified_violation_is_a_server_error(self):
        exc = IntegrityError("INSERT", {}, Exception("CHECK constraint failed: rating_range"))
        status_code, code, _ = map_integrity_error(exc)
        assert (status_code, code) == (500, "DATABASE_ERROR")

    def _integrity_app(self):
        from fastapi import FastAPI
        from core.exceptions import register_exception_handlers

        mini = FastAPI()
        register_exception_handlers(mini)

        @mini.get("/check")
        def check():
            raise IntegrityError("INSERT", {}, Exception("CHECK constraint failed: rating_range"))

        return TestClient(mini, raise_server_exceptions=False)

    def test_unclassified_violation_response(self):
        response = self._integrity_app().get("/check")

        assert response.status_code == 500
        assert response.json()["code"] == "DATABASE_ERROR"

    def test_unclassified_violation_is_masked_in_production(self):
        with patch.object(settings, "ENVIRONMENT", "production"):
            response = self._integrity_app().get("/check")

        assert response.status_code == 500
        body = response.json()
        assert set(body) == {"error", "code", "timestamp"}
        assert body["code"] == "INTERNAL_ERROR"
        assert body["error"] == "Internal server error"


class TestServiceEndpoints:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_health_when_database_is_down(self, client):
        with patch("main.check_db_connection", return_value=False):
            response = client.get("/health")
        assert response.status_code == 503

    def test_ping(self, client):
        assert client.get("/ping").json() == {"pong": True}

    def test_security_headers(self, client):
        response = client.get("/ping")
        assert response.headers["X-Content-Type-Options"] == "nosniff"


class TestApiExceptions:
    def test_internal_server_error_keeps_its_code(self):
        from fastapi import FastAPI
        from core.exceptions import InternalServerError, register_exception_handlers

        app = FastAPI()
        register_exception_handlers(app)

        @app.get("/explode")
        def explode():
            raise InternalServerError("Storage backend unavailable", error_code="STORAGE_DOWN")

        response = TestClient(app).get("/explode")

        assert response.status_code == 500
        assert response.json()["code"] == "STORAGE_DOWN"
        assert response.json()["error"] == "Storage backend unavailable"
