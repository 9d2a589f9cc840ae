from datetime import datetime

from auth.session_store import MemorySessionStore
from tests.oauth_helpers import _build_oauth_server, now_ms, start_authorization


def test_status_of_pending_session() -> None:
    _, test_client, _ = _build_oauth_server()
    started = start_authorization(test_client, platform="mobile")

    response = test_client.get(f"/api/bexio-oauth/status/{started['sessionId']}")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "pending"
    assert payload["platform"] == "mobile"
    assert "data" not in payload
    assert datetime.fromisoformat(payload["createdAt"]).tzinfo is not None


def test_completed_session_is_reported_once() -> None:
    _, test_client, _ = _build_oauth_server()
    started = start_authorization(test_client)
    test_client.get(
        "/api/bexio-oauth/callback",
        params={"code": "code-1", "state": started["state"]},
    )

    first = test_client.get(f"/api/bexio-oauth/status/{started['sessionId']}")
    second = test_client.get(f"/api/bexio-oauth/status/{started['sessionId']}")

    assert first.json()["status"] == "completed"
    data = first.json()["data"]
    assert data["companyId"] == "company-42"
    assert data["userEmail"] == "user@example.com"
    assert data["expiresAt"] > now_ms()
    assert second.status_code == 404


def test_error_session_reports_reason() -> None:
    _, test_client, _ = _build_oauth_server()
    started = start_authorization(test_client)
    test_client.get(
        "/api/bexio-oauth/callback",
        params={"error": "access_denied", "state": started["state"]},
        follow_redirects=False,
    )

    payload = test_client.get(f"/api/bexio-oauth/status/{started['sessionId']}").json()

    assert payload["status"] == "error"
    assert payload["data"]["error"] == "access_denied"


def test_unknown_session_is_404() -> None:
    _, test_client, _ = _build_oauth_server()

    response = test_client.get("/api/bexio-oauth/status/missing")

    assert response.status_code == 404
    assert response.json()["error"] == "session_not_found"


def test_expired_session_is_404(clock) -> None:
    store = MemorySessionStore(clock=clock)
    _, test_client, _ = _build_oauth_server(session_store=store, clock=clock)
    started = start_authorization(test_client)

    clock.advance(11 * 60)

    assert test_client.get(f"/api/bexio-oauth/status/{started['sessionId']}").status_code == 404
