import base64
import json
import time
import urllib.parse

from starlette.applications import Starlette
from starlette.testclient import TestClient

from auth.oauth_server import OAuthServer
from auth.session_store import MemorySessionStore
from bexio_sync.schemas import ProviderProfile, ProviderTokenPayload


def make_jwt(claims: dict) -> str:
    def _segment(payload: dict) -> str:
        raw = json.dumps(payload).encode()
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()

    return f"{_segment({'alg': 'none'})}.{_segment(claims)}.signature"


ACCESS_CLAIMS = {
    "company_id": "company-42",
    "scope": "openid offline_access contact_show project_show timesheet_show timesheet_edit",
}


def token_payload(**overrides) -> ProviderTokenPayload:
    values = {
        "access_token": make_jwt(ACCESS_CLAIMS),
        "refresh_token": "bexio-refresh-token",
        "expires_in": 3600,
        "scope": ACCESS_CLAIMS["scope"],
        "id_token": make_jwt({"email": "idtoken@example.com"}),
    }
    values.update(overrides)
    return ProviderTokenPayload(**values)


class Recorder:
    def __init__(self, result=None, error: Exception | None = None) -> None:
        self.calls: list[dict] = []
        self._result = result
        self._error = error

    async def __call__(self, *args, **kwargs):
        self.calls.append(kwargs)
        if self._error is not None:
            raise self._error
        return self._result


def _build_oauth_server(
    *,
    exchange_code_fn=None,
    refresh_token_fn=None,
    fetch_profile_fn=None,
    session_store=None,
    client_id: str = "bexio-client",
    client_secret: str = "bexio-secret",
    **kwargs,
):
    store = session_store or MemorySessionStore()
    oauth = OAuthServer(
        client_id=client_id,
        client_secret=client_secret,
        session_store=store,
        exchange_code_fn=exchange_code_fn or Recorder(token_payload()),
        refresh_token_fn=refresh_token_fn or Recorder(token_payload(access_token="refreshed-access")),
        fetch_profile_fn=fetch_profile_fn or Recorder(ProviderProfile(email="user@example.com", id=7)),
        **kwargs,
    )
    app = Starlette(routes=oauth.routes())
    return oauth, TestClient(app), store


def start_authorization(test_client, **body) -> dict:
    payload = {"redirectUri": "https://app.example.com/api/bexio-oauth/callback"}
    payload.update(body)
    response = test_client.post("/api/bexio-oauth/auth", json=payload)
    assert response.status_code == 200, response.text
    return response.json()


def query_of(url: str) -> dict[str, list[str]]:
    return urllib.parse.parse_qs(urllib.parse.urlparse(url).query)


def now_ms() -> int:
    return int(time.time() * 1000)
