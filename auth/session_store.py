from __future__ import annotations

import asyncio
import contextlib
import fcntl
import json
import os
import tempfile
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable

from bexio_sync.constants import OAUTH_LOGGER, SESSION_TTL_SECONDS

from .models import OAuthSession

IMMUTABLE_FIELDS = frozenset({"session_id", "code_verifier", "redirect_uri", "created_at"})


class SessionStore(ABC):
    """Keyed store of OAuth sessions with lazy expiry on read."""

    def __init__(
        self,
        *,
        ttl_seconds: int = SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = asyncio.Lock()

    def is_expired(self, session: OAuthSession) -> bool:
        return self._clock() - session.created_at > self.ttl_seconds

    async def create(self, session: OAuthSession) -> None:
        async with self._lock:
            with self._exclusive():
                await self._purge_expired()
                await self._write(session)

    async def get(self, session_id: str) -> OAuthSession | None:
        async with self._lock:
            with self._exclusive():
                return await self._get_live(session_id)

    async def update(
        self,
        session_id: str,
        *,
        expected_status: str | None = None,
        **changes,
    ) -> OAuthSession | None:
        """Apply ``changes`` and return the session, or None when it is absent.

        With ``expected_status`` the check and the write happen under the same
        lock, and a session in any other status is left untouched (None).
        """
        frozen = IMMUTABLE_FIELDS.intersection(changes)
        if frozen:
            raise ValueError(f"Cannot update immutable session fields: {', '.join(sorted(frozen))}")

        async with self._lock:
            with self._exclusive():
                session = await self._get_live(session_id)
                if session is None:
                    return None
                if expected_status is not None and session.status != expected_status:
                    OAUTH_LOGGER.info(
                        "OAuth session %s is %s, not %s; update skipped",
                        session_id,
                        session.status,
                        expected_status,
                    )
                    return None
                for key, value in changes.items():
                    if not hasattr(session, key):
                        raise ValueError(f"Unknown session field: {key}")
                    setattr(session, key, value)
                await self._write(session)
                return session

    async def delete(self, session_id: str) -> None:
        async with self._lock:
            with self._exclusive():
                await self._remove(session_id)

    def _exclusive(self):
        return contextlib.nullcontext()

    async def _get_live(self, session_id: str) -> OAuthSession | None:
        session = await self._read(session_id)
        if session is None:
            return None
        if self.is_expired(session):
            OAUTH_LOGGER.info("OAuth session %s expired; removing it", session_id)
            await self._remove(session_id)
            return None
        return session

    @abstractmethod
    async def _purge_expired(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _read(self, session_id: str) -> OAuthSession | None:
        raise NotImplementedError

    @abstractmethod
    async def _write(self, session: OAuthSession) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _remove(self, session_id: str) -> None:
        raise NotImplementedError


class MemorySessionStore(SessionStore):
    """Process-local store; only valid for single-instance deployments."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._sessions: dict[str, dict] = {}

    async def _purge_expired(self) -> None:
        expired = [
            session_id
            for session_id, payload in self._sessions.items()
            if self.is_expired(OAuthSession.from_dict(payload))
        ]
        for session_id in expired:
            del self._sessions[session_id]
        if expired:
            OAUTH_LOGGER.info("Purged %s expired OAuth sessions", len(expired))

    async def _read(self, session_id: str) -> OAuthSession | None:
        payload = self._sessions.get(session_id)
        if payload is None:
            return None
        return OAuthSession.from_dict(payload)

    async def _write(self, session: OAuthSession) -> None:
        self._sessions[session.session_id] = session.to_dict()

    async def _remove(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)


class FileSessionStore(SessionStore):
    """JSON file store, shareable between instances on a common volume.

    Every read-modify-write holds an exclusive ``flock`` on a sidecar
    ``<path>.lock`` file, so processes sharing the path serialize too.
    """

    def __init__(self, path: str | Path = ".oauth-sessions.json", **kwargs) -> None:
        super().__init__(**kwargs)
        self._path = Path(path)
        self._lock_path = self._path.with_name(f"{self._path.name}.lock")

    @contextlib.contextmanager
    def _exclusive(self):
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._lock_path, "a") as handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    async def _purge_expired(self) -> None:
        all_sessions = self._read_all()
        live = {
            session_id: payload
            for session_id, payload in all_sessions.items()
            if not self.is_expired(OAuthSession.from_dict(payload))
        }
        if len(live) != len(all_sessions):
            OAUTH_LOGGER.info("Purged %s expired OAuth sessions", len(all_sessions) - len(live))
            self._write_all(live)

    async def _read(self, session_id: str) -> OAuthSession | None:
        payload = self._read_all().get(session_id)
        if payload is None:
            return None
        return OAuthSession.from_dict(payload)

    async def _write(self, session: OAuthSession) -> None:
        all_sessions = self._read_all()
        all_sessions[session.session_id] = session.to_dict()
        self._write_all(all_sessions)

    async def _remove(self, session_id: str) -> None:
        all_sessions = self._read_all()
        if all_sessions.pop(session_id, None) is not None:
            self._write_all(all_sessions)

    def _read_all(self) -> dict[str, dict]:
        if not self._path.exists():
            return {}

        raw = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise RuntimeError("Session store file is invalid; expected top-level JSON object.")
        return raw

    def _write_all(self, payload: dict[str, dict]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()


def build_session_store(path: str | None, *, ttl_seconds: int = SESSION_TTL_SECONDS) -> SessionStore:
    if path:
        return FileSessionStore(path, ttl_seconds=ttl_seconds)
    return MemorySessionStore(ttl_seconds=ttl_seconds)
