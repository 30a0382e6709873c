"""
API tests: identity header, denial payloads, lifecycle endpoints.
"""
import logging
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from partyplanner.core.config import settings
from partyplanner.main import app


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(settings, "AUTO_ASSIGN_TRIAL", True)
    return TestClient(app)


def _headers(user_id=None):
    return {"X-User-Id": user_id or f"user-{uuid4().hex[:12]}"}


def test_missing_identity_is_401(client):
    response = client.get("/api/entitlements")
    assert response.status_code == 401
    body = response.json()
    assert body["error"]["code"] == "http_error"
    assert body["error"]["request_id"] == response.headers["x-request-id"]


def test_signup_gets_trial_entitlements(client):
    response = client.get("/api/entitlements", headers=_headers())
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["plan_id"] == "essai-gratuit"
    assert data["limits"]["guests.max_per_event"] == 100
    assert data["features"]["budget.enabled"] is True


def test_quota_endpoint(client):
    data = client.get("/api/entitlements/quota", headers=_headers()).json()["data"]
    assert data["total"] == 1
    assert data["can_create"] is True
    assert data["warning"] is None


def test_event_creation_quota_denial(client):
    headers = _headers()
    first = client.post("/api/events", json={"title": "Mariage"}, headers=headers)
    assert first.status_code == 200
    assert first.json()["data"]["max_guests_allowed"] == 100

    second = client.post("/api/events", json={"title": "Encore"}, headers=headers)
    assert second.status_code == 403
    error = second.json()["error"]
    assert error["code"] == "quota_exceeded"
    assert error["quota"]["remaining"] == 0
    assert second.headers["x-request-id"] == error["request_id"]


def test_request_id_is_echoed(client):
    response = client.get("/api/entitlements", headers={**_headers(), "x-request-id": "rid-123"})
    assert response.headers["x-request-id"] == "rid-123"


def test_request_log_carries_user_and_event(client, caplog):
    headers = _headers("user-log-check")
    event_id = client.post("/api/events", json={"title": "Kermesse"}, headers=headers).json()["data"]["event_id"]

    with caplog.at_level(logging.INFO, logger="partyplanner"):
        client.get(f"/api/events/{event_id}", headers=headers)

    records = [r for r in caplog.records if r.getMessage() == "[http] request complete"]
    assert records
    assert records[-1].user_id == "user-log-check"
    assert records[-1].event_id == event_id
    assert records[-1].status == 200


def test_validation_error_payload(client):
    response = client.post("/api/events", json={"title": "   "}, headers=_headers())
    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "validation_error"
    assert error["field"] == "title"


def test_roles_require_feature_then_validate(client):
    headers = _headers()
    event_id = client.post("/api/events", json={"title": "Gala"}, headers=headers).json()["data"]["event_id"]

    denied = client.post(
        f"/api/events/{event_id}/roles",
        json={"name": "Accueil", "permissions": ["guests.view"]},
        headers=headers,
    )
    assert denied.status_code == 403
    assert denied.json()["error"]["code"] == "feature_unavailable"

    assert client.post("/api/subscriptions", json={"plan_id": "pro"}, headers=headers).status_code == 200

    invalid = client.post(
        f"/api/events/{event_id}/roles",
        json={"name": "Accueil", "permissions": []},
        headers=headers,
    )
    assert invalid.status_code == 422
    assert invalid.json()["error"]["field"] == "permissions"

    created = client.post(
        f"/api/events/{event_id}/roles",
        json={"name": "Accueil", "permissions": ["guests.view"]},
        headers=headers,
    )
    assert created.status_code == 200
    roles = client.get(f"/api/events/{event_id}/roles", headers=headers).json()["data"]
    assert "Accueil" in [r["name"] for r in roles]


def test_collaborator_flow_and_limit(client):
    owner = _headers()
    event_id = client.post("/api/events", json={"title": "Fete"}, headers=owner).json()["data"]["event_id"]
    member_id = f"user-{uuid4().hex[:12]}"

    invited = client.post(
        f"/api/events/{event_id}/collaborators",
        json={"user_id": member_id, "roles": ["guest_manager"]},
        headers=owner,
    )
    assert invited.status_code == 200

    member = _headers(member_id)
    pending = client.get(f"/api/events/{event_id}/permissions/me", headers=member).json()["data"]
    assert pending["permissions"] == []

    client.post(f"/api/events/{event_id}/collaborators/accept", headers=member)
    check = client.get(
        f"/api/events/{event_id}/permissions/check",
        params={"permission": "guests.import"},
        headers=member,
    ).json()["data"]
    assert check["allowed"] is True

    full = client.post(
        f"/api/events/{event_id}/collaborators",
        json={"user_id": f"user-{uuid4().hex[:12]}"},
        headers=owner,
    )
    assert full.status_code == 403
    assert full.json()["error"]["code"] == "limit_exceeded"


def test_guest_capacity_check(client):
    headers = _headers()
    event_id = client.post("/api/events", json={"title": "Fete"}, headers=headers).json()["data"]["event_id"]
    ok = client.get(f"/api/entitlements/events/{event_id}/guests/check", params={"current": 10}, headers=headers)
    assert ok.status_code == 200
    assert ok.json()["data"]["remaining"] == 90

    full = client.get(f"/api/entitlements/events/{event_id}/guests/check", params={"current": 100}, headers=headers)
    assert full.status_code == 403
    assert full.json()["error"]["reason"] == "limit"


def test_event_access_requires_permission(client):
    event_id = client.post("/api/events", json={"title": "Prive"}, headers=_headers()).json()["data"]["event_id"]
    response = client.get(f"/api/events/{event_id}", headers=_headers())
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "forbidden"


def test_unknown_event_is_404(client):
    response = client.get("/api/events/nope", headers=_headers())
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "not_found"


def test_subscription_lifecycle_endpoints(client):
    headers = _headers()
    current = client.get("/api/subscriptions/current", headers=headers).json()["data"]
    assert current["status"] == "trial"

    upgraded = client.post(f"/api/subscriptions/{current['id']}/upgrade", json={"plan_id": "pro"}, headers=headers)
    assert upgraded.json()["data"]["payment_status"] == "pending"

    top_up = client.post("/api/subscriptions/top-ups", json={"credits": 5}, headers=headers)
    assert top_up.json()["data"]["subscription_id"] == current["id"]

    stranger = client.post(f"/api/subscriptions/{current['id']}/cancel", headers=_headers())
    assert stranger.status_code == 403

    cancelled = client.post(f"/api/subscriptions/{current['id']}/cancel", headers=headers)
    assert cancelled.json()["data"]["status"] == "cancelled"
    assert client.get("/api/subscriptions/current", headers=headers).json()["data"] is None


def test_mark_paid_admin_only(client):
    headers = _headers()
    current = client.get("/api/subscriptions/current", headers=headers).json()["data"]
    response = client.post(f"/api/subscriptions/{current['id']}/mark-paid", headers=headers)
    assert response.status_code == 403


def test_plans_listing_hides_consumed_trial(client):
    data = client.get("/api/plans", headers=_headers()).json()["data"]
    assert [p["plan_id"] for p in data] == ["pro", "agence"]
    assert client.get("/api/plans/unknown").status_code == 404


def test_health(client):
    assert client.get("/healthz").json() == {"status": "ok"}
    assert client.get("/readyz").json() == {"status": "ok"}
    body = client.get("/api/health/db", params={"now": "2026-01-01T00:00:00Z"}).json()
    assert body["ok"] is True
    assert body["db"]["latency_ms"] is None
    assert "subscriptions" in body["db"]["tables_present"]
