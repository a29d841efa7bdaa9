"""Tests for the consent endpoints."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from proxyguard.main import app
from tests.conftest import user_headers


@pytest.fixture
def client():
    return TestClient(app)


def grant(client, user_id="user-1", **overrides):
    body = {"action_class": "create_calendar_event", "scope": "standing"}
    body.update(overrides)
    resp = client.post("/v1/authorizations", headers=user_headers(user_id), json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestConsentEndpoints:
    def test_dashboard(self, client):
        soon = (datetime.now(timezone.utc) + timedelta(days=2)).isoformat()
        created = grant(client, expires_at=soon)
        grant(client, action_class="send_email")

        data = client.get("/v1/consent/dashboard", headers=user_headers()).json()
        assert data["user_id"] == "user-1"
        statuses = {i["authorization"]["id"]: i["status"] for i in data["items"]}
        assert statuses[created["id"]] == "expiring_soon"
        assert sorted(statuses.values()) == ["active", "expiring_soon"]
        assert all(i["usage"]["total_actions"] == 0 for i in data["items"])
        assert len(data["recent_history"]) == 2

    def test_history(self, client):
        created = grant(client)
        client.delete(f"/v1/authorizations/{created['id']}", headers=user_headers())

        history = client.get("/v1/consent/history", headers=user_headers()).json()
        assert {h["change_type"] for h in history} == {"granted", "revoked"}

        revoked = client.get(
            "/v1/consent/history", headers=user_headers(), params={"change_type": "revoked"}
        ).json()
        assert len(revoked) == 1

    def test_modify(self, client):
        created = grant(client)
        resp = client.patch(
            f"/v1/consent/{created['id']}",
            headers=user_headers(),
            json={"conditions": {"allowed_calendars": ["primary"]}},
        )
        assert resp.status_code == 200
        assert resp.json()["conditions"]["allowed_calendars"] == ["primary"]

        check = client.post(
            "/v1/authorizations/check",
            headers=user_headers(),
            json={"action_class": "create_calendar_event", "metadata": {"calendarId": "work"}},
        ).json()
        assert check["authorized"] is False

    def test_modify_other_users_grant_is_forbidden(self, client):
        created = grant(client)
        resp = client.patch(
            f"/v1/consent/{created['id']}",
            headers=user_headers("user-2"),
            json={"scope": "single"},
        )
        assert resp.status_code == 403

    def test_reminders(self, client):
        soon = (datetime.now(timezone.utc) + timedelta(days=3)).isoformat()
        later = (datetime.now(timezone.utc) + timedelta(days=40)).isoformat()
        near = grant(client, expires_at=soon)
        grant(client, expires_at=later)

        reminders = client.get("/v1/consent/reminders", headers=user_headers()).json()
        assert [a["id"] for a in reminders] == [near["id"]]

    def test_integration(self, client):
        grant(client)
        grant(client, action_class="create_github_issue")
        calendar = client.get("/v1/consent/integration/calendar", headers=user_headers()).json()
        assert [a["action_class"] for a in calendar] == ["create_calendar_event"]

        resp = client.get("/v1/consent/integration/fax", headers=user_headers())
        assert resp.status_code == 422
