"""
Persisted session cache for the dashboard client.

Two keys, as the browser build keeps them in localStorage: a JSON session blob
and a separate expiry timestamp (epoch ms, 24 hours from the last save).
Expired, corrupt or half-written records are cleared and reported as "nothing
stored"; load() never raises. Whatever is loaded stays provisional until the
session controller re-validates it against the backend.
"""
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

SESSION_KEY = "tubedigest_session"
SESSION_EXPIRY_KEY = "tubedigest_session_expiry"
SESSION_TTL_MS = 24 * 60 * 60 * 1000


class StorageBackend(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryBackend:
    """Dict-backed storage; the default for tests and short-lived processes."""

    def __init__(self, initial: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileBackend:
    """
    Key/value strings in one JSON file. Writes go through a temp file and
    os.replace so a crash never leaves a half-written store behind.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _read(self) -> dict[str, str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Session store %s is corrupt; starting empty", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".session-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp, self.path)
        except OSError:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

    def get(self, key: str) -> str | None:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)


@dataclass(frozen=True)
class SessionData:
    user: dict | None
    is_authenticated: bool
    last_checked: int  # epoch ms of the last successful validation
    has_completed_onboarding: bool

    def to_json(self, saved_at: int) -> str:
        return json.dumps({
            "user": self.user,
            "isAuthenticated": self.is_authenticated,
            "lastChecked": self.last_checked,
            "hasCompletedOnboarding": self.has_completed_onboarding,
            "lastSaved": saved_at,
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionData":
        user = data.get("user")
        return cls(
            user=user if isinstance(user, dict) else None,
            is_authenticated=bool(data.get("isAuthenticated")),
            last_checked=int(data.get("lastChecked") or 0),
            has_completed_onboarding=bool(data.get("hasCompletedOnboarding")),
        )


class SessionStorage:
    def __init__(
        self,
        backend: StorageBackend | None = None,
        clock: Callable[[], float] = time.time,
        ttl_ms: int = SESSION_TTL_MS,
    ):
        self.backend = backend if backend is not None else MemoryBackend()
        self.clock = clock
        self.ttl_ms = ttl_ms

    def now_ms(self) -> int:
        return int(self.clock() * 1000)

    def save(self, data: SessionData) -> None:
        """Persist the session and push the expiry to now + TTL."""
        now = self.now_ms()
        try:
            self.backend.set(SESSION_KEY, data.to_json(saved_at=now))
            self.backend.set(SESSION_EXPIRY_KEY, str(now + self.ttl_ms))
        except OSError as e:
            logger.error("Failed to save session: %s", e)

    def load(self) -> SessionData | None:
        """Return the stored session, or None (clearing storage) if absent, expired or corrupt."""
        try:
            raw = self.backend.get(SESSION_KEY)
            raw_expiry = self.backend.get(SESSION_EXPIRY_KEY)
        except OSError as e:
            logger.error("Failed to read session: %s", e)
            return None

        if raw is None and raw_expiry is None:
            return None
        if raw is None or raw_expiry is None:
            logger.info("Incomplete session record; clearing")
            self.clear()
            return None

        now = self.now_ms()
        try:
            expiry = int(raw_expiry)
            parsed = json.loads(raw)
            if not isinstance(parsed, dict):
                raise ValueError("session blob is not an object")
            data = SessionData.from_dict(parsed)
        except (ValueError, TypeError) as e:
            logger.warning("Corrupt session record (%s); clearing", e)
            self.clear()
            return None

        if now > expiry:
            logger.info("Session expired; clearing")
            self.clear()
            return None
        if now - data.last_checked > self.ttl_ms:
            logger.info("Session last validated more than %d ms ago; clearing", self.ttl_ms)
            self.clear()
            return None
        return data

    def clear(self) -> None:
        try:
            self.backend.remove(SESSION_KEY)
            self.backend.remove(SESSION_EXPIRY_KEY)
        except OSError as e:
            logger.error("Failed to clear session: %s", e)

    def update(self, **changes: Any) -> SessionData | None:
        """Patch fields of the stored session (dataclass field names); no-op when nothing is stored."""
        current = self.load()
        if current is None:
            return None
        updated = replace(current, **changes)
        self.save(updated)
        return updated

    def has_valid_session(self) -> bool:
        data = self.load()
        return data is not None and data.is_authenticated
