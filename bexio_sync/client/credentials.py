from __future__ import annotations

import json
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from bexio_sync.constants import CLIENT_LOGGER, CREDENTIALS_STORAGE_KEY

AuthType = Literal["api", "oauth"]

_FIELD_KEYS = {
    "auth_type": "authType",
    "company_id": "companyId",
    "api_key": "apiKey",
    "access_token": "accessToken",
    "refresh_token": "refreshToken",
    "user_email": "userEmail",
    "expires_at": "expiresAt",
}


@dataclass(frozen=True)
class Credential:
    auth_type: AuthType
    company_id: str
    api_key: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    user_email: str | None = None
    expires_at: int | None = None

    @property
    def token(self) -> str | None:
        if self.auth_type == "api":
            return self.api_key
        return self.access_token

    def to_json(self) -> str:
        payload = {
            camel: getattr(self, name)
            for name, camel in _FIELD_KEYS.items()
            if getattr(self, name) is not None
        }
        return json.dumps(payload)

    @classmethod
    def from_json(cls, raw: str) -> "Credential":
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise ValueError("Stored credential must be a JSON object.")
        values = {name: payload.get(camel) for name, camel in _FIELD_KEYS.items()}
        if values["auth_type"] not in ("api", "oauth"):
            raise ValueError(f"Unknown credential type: {values['auth_type']!r}")
        values["company_id"] = str(values["company_id"] or "")
        return cls(**values)


class CredentialStorage(ABC):
    @abstractmethod
    def get(self, key: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def remove(self, key: str) -> None:
        raise NotImplementedError

    def load_credential(self) -> Credential | None:
        raw = self.get(CREDENTIALS_STORAGE_KEY)
        if raw is None:
            return None
        try:
            return Credential.from_json(raw)
        except (ValueError, TypeError) as error:
            CLIENT_LOGGER.warning("Discarding unreadable stored credential: %s", error)
            self.remove(CREDENTIALS_STORAGE_KEY)
            return None

    def save_credential(self, credential: Credential) -> None:
        self.set(CREDENTIALS_STORAGE_KEY, credential.to_json())

    def clear_credential(self) -> None:
        self.remove(CREDENTIALS_STORAGE_KEY)


class MemoryCredentialStorage(CredentialStorage):
    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)


class FileCredentialStorage(CredentialStorage):
    """Key/value JSON file, readable only by the current user."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def get(self, key: str) -> str | None:
        value = self._read_all().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        payload = self._read_all()
        payload[key] = value
        self._write_all(payload)

    def remove(self, key: str) -> None:
        payload = self._read_all()
        if payload.pop(key, None) is not None:
            self._write_all(payload)

    def _read_all(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        raw = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise RuntimeError("Credential storage file is invalid; expected top-level JSON object.")
        return raw

    def _write_all(self, payload: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f"{self._path.name}.", suffix=".tmp", dir=self._path.parent)
        tmp_path = Path(tmp_name)
        try:
            os.chmod(tmp_path, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
