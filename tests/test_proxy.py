import json

import httpx
from starlette.testclient import TestClient

import server
from bexio_sync.env import Settings


def _build_proxy_client(handler) -> TestClient:
    settings = Settings(client_id="bexio-client", client_secret="bexio-secret")
    app = server.create_app(
        settings,
        proxy_transport=httpx.MockTransport(handler),
        debug_enabled=False,
    )
    return TestClient(app)


def test_proxy_forwards_get_with_bearer() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["content"] = request.content
        return httpx.Response(200, json=[{"id": 1, "name_1": "ACME"}])

    client = _build_proxy_client(handler)

    response = client.post(
        "/api/bexio-proxy",
        json={"endpoint": "/2.0/contact", "accessToken": "access-1", "companyId": "c-1"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["data"] == [{"id": 1, "name_1": "ACME"}]
    assert payload["status"] == 200
    assert payload["statusText"] == "OK"
    assert "timestamp" in payload
    assert seen["url"] == "https://api.bexio.com/2.0/contact"
    assert seen["headers"]["authorization"] == "Bearer access-1"
    assert seen["headers"]["accept"] == "application/json"
    assert "content-type" not in seen["headers"]
    assert seen["content"] == b""


def test_proxy_sends_json_body_for_writes() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["body"] = json.loads(request.content)
        seen["content_type"] = request.headers.get("content-type")
        return httpx.Response(201, json={"id": 99})

    client = _build_proxy_client(handler)

    response = client.post(
        "/api/bexio-proxy",
        json={"endpoint": "2.0/timesheet", "method": "post", "apiKey": "key-1", "data": {"text": "work"}},
    )

    assert response.status_code == 201
    assert response.json()["data"] == {"id": 99}
    assert seen == {"method": "POST", "body": {"text": "work"}, "content_type": "application/json"}


def test_proxy_mirrors_remote_error_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error_code": 404, "message": "Not found"})

    client = _build_proxy_client(handler)

    response = client.post(
        "/api/bexio-proxy",
        json={"endpoint": "/2.0/timesheet/5", "method": "DELETE", "accessToken": "a"},
    )

    assert response.status_code == 404
    assert response.json()["status"] == 404
    assert response.json()["data"]["message"] == "Not found"


def test_proxy_wraps_non_json_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>Bad gateway</html>")

    client = _build_proxy_client(handler)

    response = client.post("/api/bexio-proxy", json={"endpoint": "/2.0/contact", "accessToken": "a"})

    assert response.status_code == 502
    assert response.json()["data"] == {"rawResponse": "<html>Bad gateway</html>"}


def test_proxy_passes_absolute_endpoint() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        return httpx.Response(200, json={})

    client = _build_proxy_client(handler)

    client.post(
        "/api/bexio-proxy",
        json={"endpoint": "https://api.bexio.com/3.0/projects", "accessToken": "a"},
    )

    assert seen["url"] == "https://api.bexio.com/3.0/projects"


def test_proxy_requires_token() -> None:
    client = _build_proxy_client(lambda request: httpx.Response(200))

    response = client.post("/api/bexio-proxy", json={"endpoint": "/2.0/contact"})

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"


def test_proxy_requires_endpoint() -> None:
    client = _build_proxy_client(lambda request: httpx.Response(200))

    response = client.post("/api/bexio-proxy", json={"accessToken": "a"})

    assert response.status_code == 400


def test_proxy_transport_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _build_proxy_client(handler)

    response = client.post("/api/bexio-proxy", json={"endpoint": "/2.0/contact", "accessToken": "a"})

    assert response.status_code == 502
    assert response.json()["error"] == "proxy_failed"


def test_proxy_no_content_response() -> None:
    client = _build_proxy_client(lambda request: httpx.Response(204))

    response = client.post(
        "/api/bexio-proxy",
        json={"endpoint": "/2.0/timesheet/1", "method": "DELETE", "accessToken": "a"},
    )

    assert response.status_code == 200
    assert response.json()["status"] == 204
    assert response.json()["data"] == {}
