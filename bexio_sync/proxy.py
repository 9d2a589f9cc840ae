from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from auth.cors import DEFAULT_CORS_ORIGINS, apply_cors_response, cors_error_response, preflight_route

from .constants import PROXY_LOGGER
from .schemas import Invalid, ProxyRequest, parse_payload

PROXY_PATH = "/api/bexio-proxy"


def _decode_body(response: httpx.Response):
    text = response.text
    if not text:
        return {}
    try:
        return json.loads(text)
    except ValueError:
        PROXY_LOGGER.warning("bexio API returned a non-JSON body (status %s)", response.status_code)
        return {"rawResponse": text}


class ApiProxy:
    """Pass-through from the client app to the bexio REST API."""

    def __init__(self, client: httpx.AsyncClient, *, cors_origins: set[str] | None = None) -> None:
        self._client = client
        self.cors_origins = set(DEFAULT_CORS_ORIGINS)
        if cors_origins:
            self.cors_origins.update(cors_origins)

    def routes(self) -> list[Route]:
        return [
            Route(PROXY_PATH, self._handle_proxy, methods=["POST"]),
            preflight_route(PROXY_PATH, self.cors_origins),
        ]

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _handle_proxy(self, request: Request) -> Response:
        try:
            raw = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raw = None

        parsed = parse_payload(ProxyRequest, raw)
        if isinstance(parsed, Invalid):
            return self._error(request, "invalid_request", parsed.message, 400)
        body = parsed.value

        headers = {
            "Authorization": f"Bearer {body.bearer_token}",
            "Accept": "application/json",
        }
        content = None
        if body.data is not None:
            headers["Content-Type"] = "application/json"
            content = json.dumps(body.data)

        url = body.endpoint
        if not url.startswith("http") and not url.startswith("/"):
            url = f"/{url}"

        PROXY_LOGGER.info("Proxying %s %s (company=%s)", body.method, url, body.company_id)
        try:
            response = await self._client.request(body.method, url, headers=headers, content=content)
        except httpx.HTTPError as error:
            PROXY_LOGGER.error("bexio proxy request failed: %s", error)
            return self._error(request, "proxy_failed", f"Failed to proxy request to bexio: {error}", 502)

        envelope = {
            "data": _decode_body(response),
            "status": response.status_code,
            "statusText": response.reason_phrase,
            "headers": dict(response.headers),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        # 204 responses cannot carry the envelope body.
        http_status = 200 if response.status_code == 204 else response.status_code
        return apply_cors_response(
            request,
            JSONResponse(envelope, status_code=http_status),
            self.cors_origins,
        )

    def _error(self, request: Request, code: str, description: str, status_code: int) -> Response:
        return cors_error_response(
            request=request,
            allowed_origins=self.cors_origins,
            code=code,
            description=description,
            status_code=status_code,
        )
