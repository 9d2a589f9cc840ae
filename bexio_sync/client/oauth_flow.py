from __future__ import annotations

import asyncio

import httpx

from auth.models import TokenSet
from bexio_sync.constants import CLIENT_LOGGER, PROVIDER_TIMEOUT_SECONDS
from bexio_sync.errors import BexioSyncError, RemoteRejection, TransientNetworkError

from .credentials import Credential
from .token_manager import TokenManager

POLL_INTERVAL_SECONDS = 2.0
POLL_MAX_ATTEMPTS = 30


class AuthorizationFailed(BexioSyncError):
    status_code = 400
    code = "authorization_failed"

    def __init__(self, reason: str, description: str | None = None) -> None:
        super().__init__(f"Authorization failed: {description or reason}")
        self.reason = reason
        self.description = description


class AuthorizationTimeout(BexioSyncError):
    status_code = 408
    code = "authorization_timeout"


def _token_set(data: dict) -> TokenSet:
    return TokenSet(
        access_token=data["accessToken"],
        refresh_token=data.get("refreshToken") or "",
        expires_at=int(data["expiresAt"]),
        token_type=data.get("tokenType") or "Bearer",
        scope=data.get("scope") or "",
    )


class OAuthFlow:
    """Client side of the authorization flow: start, poll, or exchange directly."""

    def __init__(
        self,
        server_url: str,
        token_manager: TokenManager,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = PROVIDER_TIMEOUT_SECONDS,
        sleep=asyncio.sleep,
    ) -> None:
        self._base_url = f"{server_url.rstrip('/')}/api/bexio-oauth"
        self._tokens = token_manager
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._sleep = sleep

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: dict) -> dict:
        try:
            response = await self._client.post(f"{self._base_url}{path}", json=payload)
        except (httpx.TimeoutException, httpx.TransportError) as error:
            raise TransientNetworkError(f"OAuth server unreachable: {error}") from error
        if response.status_code >= 400:
            raise RemoteRejection(response.status_code, response.text)
        return response.json()

    async def start_authorization(
        self,
        redirect_uri: str,
        platform: str = "web",
        scope: str | None = None,
        *,
        state: str | None = None,
        return_url: str | None = None,
    ) -> dict:
        payload = {"redirectUri": redirect_uri, "platform": platform}
        optional = {"scope": scope, "state": state, "returnUrl": return_url}
        payload.update({key: value for key, value in optional.items() if value is not None})
        result = await self._post("/auth", payload)
        CLIENT_LOGGER.info("Authorization started (session %s)", result.get("sessionId"))
        return result

    async def poll_session(
        self,
        session_id: str,
        *,
        interval: float = POLL_INTERVAL_SECONDS,
        max_attempts: int = POLL_MAX_ATTEMPTS,
    ) -> Credential:
        seen = False
        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                await self._sleep(interval)
            try:
                response = await self._client.get(f"{self._base_url}/status/{session_id}")
            except (httpx.TimeoutException, httpx.TransportError) as error:
                CLIENT_LOGGER.warning("Session poll %s/%s failed: %s", attempt, max_attempts, error)
                continue

            if response.status_code == 404:
                if seen:
                    raise AuthorizationTimeout("Authorization session expired.")
                continue
            if response.status_code >= 400:
                CLIENT_LOGGER.warning("Session poll returned %s", response.status_code)
                continue

            seen = True
            body = response.json()
            status = body.get("status")
            data = body.get("data") or {}
            if status == "completed":
                CLIENT_LOGGER.info("Authorization session %s completed", session_id)
                return self._tokens.connect_oauth(
                    _token_set(data),
                    company_id=data.get("companyId"),
                    user_email=data.get("userEmail"),
                )
            if status == "error":
                raise AuthorizationFailed(data.get("error") or "unknown_error", data.get("description"))

        raise AuthorizationTimeout("Authorization was not completed in time.")

    async def complete_with_code(self, code: str, code_verifier: str, redirect_uri: str) -> Credential:
        data = await self._post(
            "/exchange",
            {"code": code, "codeVerifier": code_verifier, "redirectUri": redirect_uri},
        )
        return self._tokens.connect_oauth(
            _token_set(data),
            company_id=data.get("companyId"),
            user_email=data.get("userEmail"),
        )
