from __future__ import annotations

import base64
import hashlib
import random
import secrets
import string
from dataclasses import dataclass

from bexio_sync.constants import OAUTH_LOGGER

UNRESERVED_CHARSET = string.ascii_uppercase + string.ascii_lowercase + string.digits + "-._~"
VERIFIER_LENGTH = 64


@dataclass(frozen=True)
class PkcePair:
    verifier: str
    challenge: str
    degraded: bool = False


def _random_bytes(length: int) -> tuple[bytes, bool]:
    try:
        return secrets.token_bytes(length), False
    except NotImplementedError:
        OAUTH_LOGGER.warning(
            "No cryptographically secure random source available; "
            "PKCE verifier is generated from a non-secure generator."
        )
        fallback = random.Random()
        return bytes(fallback.getrandbits(8) for _ in range(length)), True


def _generate_verifier() -> tuple[str, bool]:
    raw, degraded = _random_bytes(VERIFIER_LENGTH)
    verifier = "".join(UNRESERVED_CHARSET[byte % len(UNRESERVED_CHARSET)] for byte in raw)
    return verifier, degraded


def generate_verifier() -> str:
    verifier, _ = _generate_verifier()
    return verifier


def derive_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_pkce_pair() -> PkcePair:
    verifier, degraded = _generate_verifier()
    return PkcePair(verifier=verifier, challenge=derive_challenge(verifier), degraded=degraded)
