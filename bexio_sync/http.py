from __future__ import annotations

import httpx

from .constants import PROXY_LOGGER


def _header_seconds(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return max(0, int(value))
    except ValueError:
        return None


def friendly_error_message(status_code: int, wait_seconds: int | None = None) -> str:
    if status_code == 401:
        return "Authentication failed. Your bexio session may have expired."
    if status_code == 403:
        return "Access denied. The connection is missing a required scope or company access."
    if status_code == 404:
        return "The requested resource was not found in bexio."
    if status_code == 429:
        wait = 1 if wait_seconds is None else wait_seconds
        return f"Rate limit exceeded. Please wait {wait} seconds."
    if status_code >= 500:
        return "bexio is experiencing issues. Please try again later."
    return f"bexio API request failed with status {status_code}."


async def handle_rate_limits(response: httpx.Response) -> None:
    remaining = response.headers.get("ratelimit-remaining")
    retry_after = response.headers.get("retry-after")
    wait_seconds = _header_seconds(retry_after) or _header_seconds(response.headers.get("ratelimit-reset"))
    endpoint = str(response.request.url)

    if remaining is not None or retry_after is not None:
        PROXY_LOGGER.debug(
            "Rate limit state endpoint=%s remaining=%s retry_after=%s",
            endpoint,
            remaining,
            retry_after,
        )

    if response.status_code == 429 or remaining == "0":
        if response.status_code == 429:
            response.extensions["bexio_wait_seconds"] = wait_seconds
        PROXY_LOGGER.warning(
            "Rate limit warning endpoint=%s status=%s remaining=%s wait=%s",
            endpoint,
            response.status_code,
            remaining,
            wait_seconds,
        )


def build_log_hooks(debug_enabled: bool):
    async def log_request(request: httpx.Request) -> None:
        if not debug_enabled:
            return
        PROXY_LOGGER.info("bexio API request %s %s", request.method, request.url)

    async def log_response(response: httpx.Response) -> None:
        if not debug_enabled:
            return
        PROXY_LOGGER.info(
            "bexio API response %s %s -> %s",
            response.request.method,
            response.request.url,
            response.status_code,
        )
        if response.status_code >= 400:
            body = await response.aread()
            text = body.decode("utf-8", errors="replace")
            if len(text) > 1000:
                text = text[:1000] + "...<truncated>"
            PROXY_LOGGER.warning("bexio API error body: %s", text)

    return log_request, log_response


def create_proxy_client(
    *,
    base_url: str,
    timeout: float,
    debug_enabled: bool = True,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    log_request, log_response = build_log_hooks(debug_enabled)
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=timeout,
        transport=transport,
        event_hooks={
            "request": [log_request],
            "response": [handle_rate_limits, log_response],
        },
    )
