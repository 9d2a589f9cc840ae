from __future__ import annotations

import urllib.parse

import httpx

from bexio_sync.constants import (
    BEXIO_API_BASE_URL,
    BEXIO_AUTHORIZE_URL,
    BEXIO_PROFILE_PATH,
    BEXIO_TOKEN_URL,
    OAUTH_LOGGER,
    PROVIDER_TIMEOUT_SECONDS,
)
from bexio_sync.errors import RemoteRejection, TransientNetworkError
from bexio_sync.schemas import Invalid, ProviderProfile, ProviderTokenPayload, parse_payload


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    scopes: list[str],
    state: str,
    code_challenge: str,
    *,
    authorize_url: str = BEXIO_AUTHORIZE_URL,
) -> str:
    query = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
        "state": state,
        "scope": " ".join(scopes),
    }
    return f"{authorize_url}?{urllib.parse.urlencode(query)}"


async def _token_request(
    payload: dict[str, str],
    *,
    token_url: str = BEXIO_TOKEN_URL,
    client: httpx.AsyncClient | None = None,
) -> ProviderTokenPayload:
    own_client = client is None
    http_client = client or httpx.AsyncClient(timeout=PROVIDER_TIMEOUT_SECONDS)

    try:
        response = await http_client.post(
            token_url,
            data=payload,
            headers={"Accept": "application/json"},
        )
        response.raise_for_status()
        body = response.json()
    except httpx.HTTPStatusError as error:
        raise RemoteRejection(error.response.status_code, error.response.text) from error
    except (httpx.TimeoutException, httpx.TransportError) as error:
        raise TransientNetworkError(f"Token endpoint unreachable: {error}") from error
    except ValueError as error:
        raise RemoteRejection(502, response.text, "Token endpoint returned invalid JSON.") from error
    finally:
        if own_client:
            await http_client.aclose()

    parsed = parse_payload(ProviderTokenPayload, body)
    if isinstance(parsed, Invalid):
        raise RemoteRejection(502, response.text, f"Malformed token response: {parsed.message}")
    return parsed.value


async def exchange_code(
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
    code_verifier: str,
    *,
    token_url: str = BEXIO_TOKEN_URL,
    client: httpx.AsyncClient | None = None,
) -> ProviderTokenPayload:
    return await _token_request(
        {
            "grant_type": "authorization_code",
            "client_id": client_id,
            "client_secret": client_secret,
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        },
        token_url=token_url,
        client=client,
    )


async def refresh_token(
    client_id: str,
    client_secret: str,
    refresh_token: str,
    *,
    token_url: str = BEXIO_TOKEN_URL,
    client: httpx.AsyncClient | None = None,
) -> ProviderTokenPayload:
    return await _token_request(
        {
            "grant_type": "refresh_token",
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
        },
        token_url=token_url,
        client=client,
    )


async def fetch_user_profile(
    access_token: str,
    *,
    api_base_url: str = BEXIO_API_BASE_URL,
    client: httpx.AsyncClient | None = None,
) -> ProviderProfile | None:
    """Best effort; any failure is logged and reported as ``None``."""
    own_client = client is None
    http_client = client or httpx.AsyncClient(timeout=PROVIDER_TIMEOUT_SECONDS)

    try:
        response = await http_client.get(
            f"{api_base_url}{BEXIO_PROFILE_PATH}",
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
        )
        if response.status_code >= 400:
            OAUTH_LOGGER.warning(
                "Profile request failed with status %s; continuing without email",
                response.status_code,
            )
            return None
        body = response.json()
    except (httpx.HTTPError, ValueError) as error:
        OAUTH_LOGGER.warning("Profile request failed: %s", error)
        return None
    finally:
        if own_client:
            await http_client.aclose()

    parsed = parse_payload(ProviderProfile, body)
    if isinstance(parsed, Invalid):
        OAUTH_LOGGER.warning("Profile response malformed: %s", parsed.message)
        return None
    return parsed.value
