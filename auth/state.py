from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass

from bexio_sync.errors import ValidationError


@dataclass(frozen=True)
class PackedState:
    """Authorization state round-tripped through the provider."""

    session_id: str
    verifier_hash: str | None = None
    client_state: str | None = None
    platform: str = "web"
    return_url: str | None = None


def encode(state: PackedState) -> str:
    payload = {
        "sid": state.session_id,
        "cvh": state.verifier_hash,
        "s": state.client_state,
        "platform": state.platform,
        "ru": state.return_url,
    }
    data = json.dumps(payload, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def decode(raw: str) -> PackedState:
    try:
        data = base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4))
        payload = json.loads(data)
    except (binascii.Error, ValueError) as error:
        raise ValidationError("State parameter is not a valid packed state.") from error

    if not isinstance(payload, dict):
        raise ValidationError("State parameter is not a valid packed state.")

    session_id = payload.get("sid")
    if not isinstance(session_id, str) or not session_id:
        raise ValidationError("State parameter is missing the session id.")

    platform = payload.get("platform")
    return PackedState(
        session_id=session_id,
        verifier_hash=payload.get("cvh") if isinstance(payload.get("cvh"), str) else None,
        client_state=payload.get("s") if isinstance(payload.get("s"), str) else None,
        platform=platform if platform in ("web", "mobile") else "web",
        return_url=payload.get("ru") if isinstance(payload.get("ru"), str) else None,
    )
