import urllib.parse

import httpx
import pytest

from auth.provider import build_authorization_url, exchange_code, fetch_user_profile, refresh_token
from bexio_sync.constants import BEXIO_AUTHORIZE_URL, BEXIO_TOKEN_URL
from bexio_sync.errors import RemoteRejection, TransientNetworkError


def test_build_authorization_url_contains_required_params() -> None:
    url = build_authorization_url(
        client_id="client123",
        redirect_uri="https://example.com/callback",
        scopes=["openid", "offline_access"],
        state="state123",
        code_challenge="challenge123",
    )

    parsed = urllib.parse.urlparse(url)
    query = urllib.parse.parse_qs(parsed.query)

    assert url.startswith(BEXIO_AUTHORIZE_URL)
    assert query["client_id"] == ["client123"]
    assert query["redirect_uri"] == ["https://example.com/callback"]
    assert query["response_type"] == ["code"]
    assert query["code_challenge"] == ["challenge123"]
    assert query["code_challenge_method"] == ["S256"]
    assert query["state"] == ["state123"]
    assert query["scope"] == ["openid offline_access"]


@pytest.mark.asyncio
async def test_exchange_code_success(httpx_mock) -> None:
    httpx_mock.add_response(
        url=BEXIO_TOKEN_URL,
        method="POST",
        json={
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "expires_in": 7200,
            "scope": "openid",
        },
    )

    token = await exchange_code(
        client_id="id",
        client_secret="secret",
        code="code123",
        redirect_uri="https://example.com/callback",
        code_verifier="verifier123",
    )

    assert token.access_token == "access-1"
    assert token.refresh_token == "refresh-1"
    assert token.expires_in == 7200

    form = urllib.parse.parse_qs(httpx_mock.get_request().content.decode())
    assert form["grant_type"] == ["authorization_code"]
    assert form["code_verifier"] == ["verifier123"]
    assert form["redirect_uri"] == ["https://example.com/callback"]


@pytest.mark.asyncio
async def test_exchange_code_rejection_keeps_status(httpx_mock) -> None:
    httpx_mock.add_response(url=BEXIO_TOKEN_URL, method="POST", status_code=400, text="invalid_grant")

    with pytest.raises(RemoteRejection) as excinfo:
        await exchange_code(
            client_id="id",
            client_secret="secret",
            code="used-code",
            redirect_uri="https://example.com/callback",
            code_verifier="verifier123",
        )

    assert excinfo.value.status_code == 400
    assert excinfo.value.body == "invalid_grant"


@pytest.mark.asyncio
async def test_token_request_timeout_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(TransientNetworkError):
            await refresh_token(client_id="id", client_secret="secret", refresh_token="r", client=client)


@pytest.mark.asyncio
async def test_refresh_token_defaults_expiry(httpx_mock) -> None:
    httpx_mock.add_response(url=BEXIO_TOKEN_URL, method="POST", json={"access_token": "access-2"})

    token = await refresh_token(client_id="id", client_secret="secret", refresh_token="refresh-1")

    assert token.access_token == "access-2"
    assert token.refresh_token is None
    assert token.expires_in == 3600


@pytest.mark.asyncio
async def test_malformed_token_response(httpx_mock) -> None:
    httpx_mock.add_response(url=BEXIO_TOKEN_URL, method="POST", json={"token_type": "Bearer"})

    with pytest.raises(RemoteRejection, match="Malformed token response"):
        await refresh_token(client_id="id", client_secret="secret", refresh_token="refresh-1")


@pytest.mark.asyncio
async def test_fetch_user_profile_failure_returns_none(httpx_mock) -> None:
    httpx_mock.add_response(url="https://api.bexio.com/3.0/users/me", status_code=403)

    assert await fetch_user_profile("access") is None


@pytest.mark.asyncio
async def test_fetch_user_profile_sends_bearer(httpx_mock) -> None:
    httpx_mock.add_response(url="https://api.bexio.com/3.0/users/me", json={"id": 3, "email": "me@example.com"})

    profile = await fetch_user_profile("access")

    assert profile.email == "me@example.com"
    assert httpx_mock.get_request().headers["authorization"] == "Bearer access"
