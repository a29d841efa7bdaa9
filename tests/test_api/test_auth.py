"""Tests for API key authentication and caller identity."""

import pytest
from fastapi.testclient import TestClient

from proxyguard.main import app
from tests.conftest import API_KEY_HEADER, user_headers


@pytest.fixture
def client():
    return TestClient(app)


CHECK_PAYLOAD = {"action_class": "create_task", "confidence": 0.9}


class TestApiKeyAuth:
    def test_missing_key_returns_401(self, client):
        resp = client.post(
            "/v1/authorizations/check", headers={"X-User-ID": "user-1"}, json=CHECK_PAYLOAD
        )
        assert resp.status_code == 401
        assert "Missing API key" in resp.json()["detail"]

    def test_wrong_key_returns_401(self, client):
        resp = client.post(
            "/v1/authorizations/check",
            headers={"X-API-Key": "wrong-key", "X-User-ID": "user-1"},
            json=CHECK_PAYLOAD,
        )
        assert resp.status_code == 401
        assert "Invalid API key" in resp.json()["detail"]

    def test_correct_key_returns_200(self, client):
        resp = client.post(
            "/v1/authorizations/check", headers=user_headers(), json=CHECK_PAYLOAD
        )
        assert resp.status_code == 200

    def test_health_no_auth_needed(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["service"] == "proxyguard"

    def test_ready_no_auth_needed(self, client):
        resp = client.get("/ready")
        assert resp.status_code == 200

    @pytest.mark.parametrize(
        "path",
        ["/v1/audit", "/v1/audit/stats", "/v1/rollback/history", "/v1/consent/dashboard"],
    )
    def test_routers_require_auth(self, client, path):
        resp = client.get(path, headers={"X-User-ID": "user-1"})
        assert resp.status_code == 401


class TestUserIdentity:
    def test_missing_user_id_returns_401(self, client):
        resp = client.post("/v1/authorizations/check", headers=API_KEY_HEADER, json=CHECK_PAYLOAD)
        assert resp.status_code == 401
        assert "X-User-ID" in resp.json()["detail"]

    def test_blank_user_id_returns_401(self, client):
        resp = client.get("/v1/audit", headers={**API_KEY_HEADER, "X-User-ID": "   "})
        assert resp.status_code == 401
