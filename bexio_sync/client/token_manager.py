from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, replace
from typing import Callable

import httpx

from auth.claims import decode_claims, missing_scopes
from auth.models import TokenSet
from bexio_sync.constants import CLIENT_LOGGER, PROVIDER_TIMEOUT_SECONDS, REFRESH_SKEW_SECONDS
from bexio_sync.errors import (
    FailureKind,
    RemoteRejection,
    TransientNetworkError,
    classify_failure,
)

from .credentials import Credential, CredentialStorage, MemoryCredentialStorage
from .retry import REFRESH_RETRY, RetryPolicy


@dataclass(frozen=True)
class Notification:
    level: str
    title: str
    message: str


class RefreshClient:
    """Calls the server's refresh endpoint; the client secret never leaves the server."""

    def __init__(
        self,
        server_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = PROVIDER_TIMEOUT_SECONDS,
    ) -> None:
        self._url = f"{server_url.rstrip('/')}/api/bexio-oauth/refresh"
        self._client = client
        self._timeout = timeout

    async def refresh(self, refresh_token: str) -> dict:
        own_client = self._client is None
        http_client = self._client or httpx.AsyncClient(timeout=self._timeout)
        try:
            response = await http_client.post(
                self._url,
                json={"refreshToken": refresh_token},
                timeout=self._timeout,
            )
        except (httpx.TimeoutException, httpx.TransportError) as error:
            raise TransientNetworkError(f"Refresh endpoint unreachable: {error}") from error
        finally:
            if own_client:
                await http_client.aclose()

        if response.status_code >= 400:
            raise RemoteRejection(response.status_code, response.text)
        try:
            payload = response.json()
        except ValueError as error:
            raise RemoteRejection(502, response.text, "Refresh endpoint returned invalid JSON.") from error
        if not isinstance(payload, dict) or not payload.get("accessToken"):
            raise RemoteRejection(502, response.text, "Invalid refresh response: missing access token.")
        return payload


class TokenManager:
    def __init__(
        self,
        refresh_client: RefreshClient,
        *,
        storage: CredentialStorage | None = None,
        notify: Callable[[Notification], None] | None = None,
        clock: Callable[[], float] = time.time,
        sleep=asyncio.sleep,
        skew_seconds: int = REFRESH_SKEW_SECONDS,
    ) -> None:
        self._refresh_client = refresh_client
        self._storage = storage or MemoryCredentialStorage()
        self._notify_fn = notify
        self._clock = clock
        self._skew_seconds = skew_seconds
        self._retry = RetryPolicy(**REFRESH_RETRY, sleep=sleep)
        self._credential: Credential | None = None
        self._refresh_task: asyncio.Task | None = None
        self._disconnect_listeners: list[Callable[[], None]] = []

    @property
    def credential(self) -> Credential | None:
        return self._credential

    @property
    def is_connected(self) -> bool:
        return self._credential is not None

    def load(self) -> Credential | None:
        self._credential = self._storage.load_credential()
        if self._credential is not None:
            CLIENT_LOGGER.info("Loaded stored %s credential", self._credential.auth_type)
        return self._credential

    def connect_api_key(self, api_key: str, company_id: str) -> Credential:
        return self._set_credential(Credential(auth_type="api", company_id=company_id, api_key=api_key))

    def connect_oauth(self, tokens: TokenSet, *, company_id: str | None, user_email: str | None = None) -> Credential:
        missing = missing_scopes(decode_claims(tokens.access_token))
        if missing:
            CLIENT_LOGGER.warning("Connected token lacks scopes: %s", ", ".join(missing))
            self._notify(
                "warning",
                "Limited access",
                f"The bexio connection is missing: {', '.join(missing)}. Reconnect to grant them.",
            )
        return self._set_credential(
            Credential(
                auth_type="oauth",
                company_id=company_id or "",
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token or None,
                user_email=user_email,
                expires_at=tokens.expires_at,
            )
        )

    def add_disconnect_listener(self, listener: Callable[[], None]) -> None:
        """Register a callback for data that must not outlive the credential."""
        self._disconnect_listeners.append(listener)

    def disconnect(self) -> None:
        self._credential = None
        self._storage.clear_credential()
        for listener in self._disconnect_listeners:
            listener()
        CLIENT_LOGGER.info("Disconnected from bexio")

    async def ensure_valid_token(self) -> str | None:
        credential = self._credential
        if credential is None:
            return None
        if credential.auth_type == "api":
            return credential.api_key
        if not self._needs_refresh(credential):
            return credential.access_token

        task = self._refresh_task
        if task is None:
            CLIENT_LOGGER.info("Access token expires soon; refreshing")
            task = asyncio.create_task(self._perform_refresh(credential))
            task.add_done_callback(self._forget_task)
            self._refresh_task = task
        else:
            CLIENT_LOGGER.debug("Joining in-flight token refresh")
        return await asyncio.shield(task)

    def _needs_refresh(self, credential: Credential) -> bool:
        if credential.expires_at is None:
            return False
        remaining_ms = credential.expires_at - int(self._clock() * 1000)
        return remaining_ms <= self._skew_seconds * 1000

    def _forget_task(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def _perform_refresh(self, credential: Credential) -> str | None:
        if not credential.refresh_token:
            CLIENT_LOGGER.warning("Access token expired and no refresh token is available")
            self._notify("error", "Session expired", "Please reconnect to bexio.")
            return None

        try:
            payload = await self._retry.run(
                lambda: self._refresh_client.refresh(credential.refresh_token),
                description="token refresh",
            )
        except Exception as error:
            if classify_failure(error) is FailureKind.TOKEN_INVALID:
                CLIENT_LOGGER.warning("Refresh token rejected; clearing credential")
                self.disconnect()
                self._notify(
                    "error",
                    "Re-authentication required",
                    "Your bexio session has expired. Please connect again.",
                )
            else:
                CLIENT_LOGGER.error("Token refresh failed: %s", error)
                self._notify(
                    "error",
                    "Token refresh failed",
                    "Could not refresh the bexio session. Please try again later.",
                )
            return None

        if self._credential is not credential:
            CLIENT_LOGGER.info("Credential changed during refresh; discarding refreshed token")
            return None

        expires_in = int(payload.get("expiresIn") or 3600)
        refreshed = replace(
            credential,
            access_token=payload["accessToken"],
            refresh_token=payload.get("refreshToken") or credential.refresh_token,
            expires_at=int((self._clock() + expires_in) * 1000),
        )
        self._set_credential(refreshed)
        CLIENT_LOGGER.info("Token refresh succeeded")
        return refreshed.access_token

    def _set_credential(self, credential: Credential) -> Credential:
        self._storage.save_credential(credential)
        self._credential = credential
        return credential

    def _notify(self, level: str, title: str, message: str) -> None:
        CLIENT_LOGGER.info("Notification [%s] %s: %s", level, title, message)
        if self._notify_fn is not None:
            self._notify_fn(Notification(level=level, title=title, message=message))
