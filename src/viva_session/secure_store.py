"""Device-local storage for session secrets."""

from __future__ import annotations

import base64
import binascii
import threading
from pathlib import Path
from typing import Protocol

import structlog
from dotenv import dotenv_values, set_key, unset_key

logger = structlog.get_logger(__name__)


class SecureStore(Protocol):
    """Opaque key/value store for secrets.

    Implementations store raw bytes and never interpret them; decoding is the
    caller's responsibility.
    """

    def put(self, key: str, value: bytes) -> None:
        """Store value under key, replacing any previous value."""
        ...

    def get(self, key: str) -> bytes | None:
        """Return the stored value, or None if nothing is stored."""
        ...

    def delete(self, key: str) -> None:
        """Remove the stored value. Missing keys are ignored."""
        ...


class MemorySecureStore:
    """In-memory store, used for tests and ephemeral processes."""

    def __init__(self) -> None:
        self._items: dict[str, bytes] = {}

    def put(self, key: str, value: bytes) -> None:
        self._items[key] = bytes(value)

    def get(self, key: str) -> bytes | None:
        return self._items.get(key)

    def delete(self, key: str) -> None:
        self._items.pop(key, None)


class DotenvSecureStore:
    """Store secrets in a private dotenv file.

    Each key is written as ``VIVA_SECURE_<KEY>`` with a base64 value, so
    arbitrary bytes survive the dotenv format.
    """

    PREFIX = "VIVA_SECURE_"

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _env_key(self, key: str) -> str:
        return self.PREFIX + key.upper().replace(".", "_").replace("-", "_")

    def _ensure_file(self) -> None:
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.touch(mode=0o600)

    def put(self, key: str, value: bytes) -> None:
        encoded = base64.b64encode(value).decode("ascii")
        with self._lock:
            self._ensure_file()
            set_key(str(self.path), self._env_key(key), encoded, quote_mode="never")

    def get(self, key: str) -> bytes | None:
        with self._lock:
            if not self.path.exists():
                return None
            raw = dotenv_values(str(self.path)).get(self._env_key(key))
        if raw is None:
            return None
        try:
            return base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("secure_store_value_unreadable", key=key)
            return None

    def delete(self, key: str) -> None:
        with self._lock:
            if not self.path.exists():
                return
            if self._env_key(key) not in dotenv_values(str(self.path)):
                return
            unset_key(str(self.path), self._env_key(key), quote_mode="never")
