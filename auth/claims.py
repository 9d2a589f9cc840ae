from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Iterable

from bexio_sync.constants import OAUTH_LOGGER, REQUIRED_SCOPES


def decode_claims(token: str | None) -> dict[str, Any] | None:
    """Read the payload segment of a JWT without verifying its signature.

    Only used to pick convenience fields (company, email, scopes) out of a
    token the provider just handed us; never as an authentication check.
    """
    if not token:
        return None
    parts = token.split(".")
    if len(parts) != 3:
        return None

    payload = parts[1]
    try:
        decoded = base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4))
        claims = json.loads(decoded)
    except (binascii.Error, ValueError) as error:
        OAUTH_LOGGER.warning("Could not decode token claims: %s", error)
        return None

    if not isinstance(claims, dict):
        return None
    return claims


def extract_company_id(claims: dict[str, Any] | None) -> str | None:
    if not claims:
        return None
    for key in ("company_id", "companyId", "user_id"):
        value = claims.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def extract_email(claims: dict[str, Any] | None) -> str | None:
    if not claims:
        return None
    for key in ("email", "login_id"):
        value = claims.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def token_scopes(claims: dict[str, Any] | None) -> set[str]:
    if not claims:
        return set()
    raw = claims.get("scope", claims.get("scp", []))
    if isinstance(raw, str):
        return set(raw.split())
    if isinstance(raw, list):
        return {item for item in raw if isinstance(item, str)}
    return set()


def missing_scopes(
    claims: dict[str, Any] | None,
    required: Iterable[str] = REQUIRED_SCOPES,
) -> list[str]:
    if claims is None:
        return []
    granted = token_scopes(claims)
    return [scope for scope in required if scope not in granted]
