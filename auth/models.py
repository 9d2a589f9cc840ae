from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Literal

SessionStatus = Literal["pending", "completed", "error"]
Platform = Literal["web", "mobile"]

MOBILE_PLATFORMS = {"mobile", "ios", "android"}


def normalize_platform(value: str | None) -> Platform:
    if value and value.strip().lower() in MOBILE_PLATFORMS:
        return "mobile"
    return "web"


@dataclass(frozen=True)
class TokenSet:
    access_token: str
    refresh_token: str
    expires_at: int
    token_type: str = "Bearer"
    scope: str = ""

    @classmethod
    def from_expires_in(
        cls,
        *,
        access_token: str,
        refresh_token: str,
        expires_in: int,
        token_type: str = "Bearer",
        scope: str = "",
        now: float | None = None,
    ) -> "TokenSet":
        issued = time.time() if now is None else now
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=int((issued + expires_in) * 1000),
            token_type=token_type,
            scope=scope,
        )

    def to_payload(self) -> dict:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresAt": self.expires_at,
            "tokenType": self.token_type,
            "scope": self.scope,
        }


@dataclass
class OAuthSession:
    session_id: str
    code_verifier: str
    redirect_uri: str
    platform: Platform = "web"
    status: SessionStatus = "pending"
    created_at: float = field(default_factory=time.time)
    return_url: str | None = None
    tokens: TokenSet | None = None
    user_email: str | None = None
    company_id: str | None = None
    error: str | None = None
    error_description: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict) -> "OAuthSession":
        data = dict(payload)
        tokens = data.pop("tokens", None)
        return cls(**data, tokens=TokenSet(**tokens) if tokens else None)
