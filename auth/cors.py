from __future__ import annotations

import urllib.parse

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

# Capacitor/Ionic webviews and local dev servers.
DEFAULT_CORS_ORIGINS = {
    "capacitor://localhost",
    "ionic://localhost",
    "http://localhost",
    "https://localhost",
}

ALLOW_METHODS = "GET, POST, OPTIONS"
ALLOW_HEADERS = "authorization, x-client-info, apikey, content-type"
PREFLIGHT_MAX_AGE = "600"


def _without_port(origin: str) -> str:
    parsed = urllib.parse.urlsplit(origin)
    if not parsed.scheme or not parsed.hostname:
        return origin
    return f"{parsed.scheme}://{parsed.hostname}"


def allowed_origin(origin: str | None, allowed_origins: set[str]) -> str | None:
    """Return the value for ``Access-Control-Allow-Origin``, or None to omit it.

    ``*`` in the configured set allows every origin. Localhost origins match
    regardless of port, so ``http://localhost:8100`` passes via ``http://localhost``.
    """
    if "*" in allowed_origins:
        return "*"
    if not origin:
        return None
    origin = origin.rstrip("/")
    if origin in allowed_origins:
        return origin
    base = _without_port(origin)
    if base != origin and base.endswith("://localhost") and base in allowed_origins:
        return origin
    return None


def apply_cors_response(
    request: Request,
    response: Response,
    allowed_origins: set[str],
) -> Response:
    value = allowed_origin(request.headers.get("origin"), allowed_origins)
    if value is None:
        return response
    response.headers["Access-Control-Allow-Origin"] = value
    response.headers["Access-Control-Allow-Methods"] = ALLOW_METHODS
    response.headers["Access-Control-Allow-Headers"] = ALLOW_HEADERS
    if value != "*":
        response.headers["Vary"] = "Origin"
    return response


def preflight_route(path: str, allowed_origins: set[str]) -> Route:
    async def preflight(request: Request) -> Response:
        response = apply_cors_response(request, Response(status_code=204), allowed_origins)
        if "Access-Control-Allow-Origin" in response.headers:
            response.headers["Access-Control-Max-Age"] = PREFLIGHT_MAX_AGE
        return response

    return Route(path, preflight, methods=["OPTIONS"])


def cors_error_response(
    request: Request,
    allowed_origins: set[str],
    code: str,
    description: str,
    status_code: int,
) -> Response:
    body = {"error": code, "error_description": description}
    return apply_cors_response(request, JSONResponse(body, status_code=status_code), allowed_origins)
