from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .constants import (
    BEXIO_API_BASE_URL,
    BEXIO_AUTHORIZE_URL,
    BEXIO_TOKEN_URL,
    DEFAULT_APP_SCHEME,
    DEFAULT_SCOPES,
    LOGGER,
    PROVIDER_TIMEOUT_SECONDS,
    SESSION_TTL_SECONDS,
)
from .errors import ConfigurationError


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_csv_env(key: str) -> set[str]:
    raw = os.getenv(key, "")
    if not raw.strip():
        return set()
    return {item.strip() for item in raw.split(",") if item.strip()}


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer value.")


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number.")


@dataclass(frozen=True)
class Settings:
    client_id: str
    client_secret: str
    authorize_url: str = BEXIO_AUTHORIZE_URL
    token_url: str = BEXIO_TOKEN_URL
    api_base_url: str = BEXIO_API_BASE_URL
    app_scheme: str = DEFAULT_APP_SCHEME
    web_complete_url: str = "/oauth-complete.html"
    scopes: tuple[str, ...] = DEFAULT_SCOPES
    cors_origins: frozenset[str] = frozenset()
    session_store_path: str | None = None
    session_ttl_seconds: int = SESSION_TTL_SECONDS
    proxy_timeout: float = PROVIDER_TIMEOUT_SECONDS
    host: str = "127.0.0.1"
    port: int = 8000


def load_settings() -> Settings:
    scopes = tuple(os.getenv("BEXIO_SCOPES", " ".join(DEFAULT_SCOPES)).split())
    return Settings(
        client_id=os.getenv("BEXIO_CLIENT_ID", "").strip(),
        client_secret=os.getenv("BEXIO_CLIENT_SECRET", "").strip(),
        authorize_url=os.getenv("BEXIO_AUTH_URL", BEXIO_AUTHORIZE_URL),
        token_url=os.getenv("BEXIO_TOKEN_URL", BEXIO_TOKEN_URL),
        api_base_url=os.getenv("BEXIO_API_BASE_URL", BEXIO_API_BASE_URL).rstrip("/"),
        app_scheme=os.getenv("BEXIO_APP_SCHEME", DEFAULT_APP_SCHEME),
        web_complete_url=os.getenv("BEXIO_WEB_COMPLETE_URL", "/oauth-complete.html"),
        scopes=scopes or DEFAULT_SCOPES,
        cors_origins=frozenset(parse_csv_env("BEXIO_CORS_ORIGINS")),
        session_store_path=os.getenv("SESSION_STORE_PATH", "").strip() or None,
        session_ttl_seconds=_get_env_int("SESSION_TTL_SECONDS", SESSION_TTL_SECONDS),
        proxy_timeout=_get_env_float("BEXIO_PROXY_TIMEOUT", PROVIDER_TIMEOUT_SECONDS),
        host=os.getenv("APP_HOST", "127.0.0.1"),
        port=_get_env_int("APP_PORT", 8000),
    )


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    from dotenv import load_dotenv

    load_dotenv(env_path, override=True)


def validate_env(settings: Settings) -> None:
    """Warn about settings that only fail once a user starts an authorization."""
    missing = [
        key
        for key, value in (
            ("BEXIO_CLIENT_ID", settings.client_id),
            ("BEXIO_CLIENT_SECRET", settings.client_secret),
        )
        if not value
    ]
    if missing:
        LOGGER.warning(
            "Missing OAuth client configuration (%s); authorization requests will fail.",
            ", ".join(missing),
        )

    if "offline_access" not in settings.scopes:
        raise ConfigurationError("BEXIO_SCOPES must include offline_access.")


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("BEXIO_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
    return debug_enabled
