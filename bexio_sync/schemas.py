from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field, model_validator

ModelT = TypeVar("ModelT", bound=BaseModel)


class _Schema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)


class AuthorizeRequest(_Schema):
    redirect_uri: str = Field(alias="redirectUri", min_length=1)
    platform: str | None = None
    state: str | None = None
    scope: str | None = None
    return_url: str | None = Field(default=None, alias="returnUrl")


class ExchangeRequest(_Schema):
    code: str = Field(min_length=1)
    code_verifier: str = Field(alias="codeVerifier", min_length=1)
    redirect_uri: str = Field(alias="redirectUri", min_length=1)


class RefreshRequest(_Schema):
    refresh_token: str = Field(alias="refreshToken", min_length=1)


class ProxyRequest(_Schema):
    endpoint: str = Field(min_length=1)
    method: str = "GET"
    access_token: str | None = Field(default=None, alias="accessToken")
    api_key: str | None = Field(default=None, alias="apiKey")
    company_id: str | int | None = Field(default=None, alias="companyId")
    data: Any = None

    @model_validator(mode="after")
    def _require_token(self) -> "ProxyRequest":
        if not (self.access_token or self.api_key):
            raise ValueError("accessToken is required.")
        self.method = self.method.upper()
        return self

    @property
    def bearer_token(self) -> str:
        return self.access_token or self.api_key or ""


class ProviderTokenPayload(_Schema):
    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    expires_in: int = 3600
    token_type: str = "Bearer"
    scope: str = ""
    id_token: str | None = None


class ProviderProfile(_Schema):
    email: str | None = None
    id: int | str | None = None


@dataclass(frozen=True)
class Parsed(Generic[ModelT]):
    value: ModelT


@dataclass(frozen=True)
class Invalid:
    message: str
    errors: list[dict] = field(default_factory=list)


ParseResult = Union[Parsed[ModelT], Invalid]


def _describe(errors: list[dict]) -> str:
    parts = []
    for error in errors:
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts) or "Invalid payload."


def parse_payload(model: type[ModelT], raw: Any) -> ParseResult:
    if not isinstance(raw, dict):
        return Invalid("Expected a JSON object.")
    try:
        return Parsed(model.model_validate(raw))
    except pydantic.ValidationError as error:
        errors = error.errors(include_url=False)
        return Invalid(_describe(errors), errors)
