from __future__ import annotations

import logging
import os
import threading
import time
from typing import Any, Callable, Protocol

import jwt
from msal_extensions import FilePersistence, FilePersistenceWithDataProtection

logger = logging.getLogger(__name__)

AuthChangeCallback = Callable[[str, "dict[str, Any] | None"], None]


class AuthStore:
    """Holds the session token and the authenticated record.

    Listeners registered with ``on_change`` run synchronously, on the
    calling thread, after every ``save``/``clear``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._token = ""
        self._record: dict[str, Any] | None = None
        self._callbacks: list[AuthChangeCallback] = []

    @property
    def token(self) -> str:
        with self._lock:
            return self._token

    @property
    def record(self) -> dict[str, Any] | None:
        with self._lock:
            return self._record

    @property
    def is_valid(self) -> bool:
        token = self.token
        if not token:
            return False

        exp = _read_expiration(token)
        if exp is None:
            return False
        return exp > time.time()

    def save(self, token: str, record: dict[str, Any] | None) -> None:
        with self._lock:
            self._token = token or ""
            self._record = record
            callbacks = list(self._callbacks)
            token, record = self._token, self._record

        for callback in callbacks:
            callback(token, record)

    def clear(self) -> None:
        self.save("", None)

    def on_change(self, callback: AuthChangeCallback) -> None:
        with self._lock:
            self._callbacks.append(callback)


def _read_expiration(token: str) -> float | None:
    try:
        claims = jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": False},
        )
    except jwt.PyJWTError:
        return None

    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return float(exp)


class TokenStorage(Protocol):
    def save_token(self, token: str) -> None: ...

    def get_token(self) -> str | None: ...

    def clear_token(self) -> None: ...

    def has_token(self) -> bool: ...


class MemoryTokenStorage:
    def __init__(self) -> None:
        self._token: str | None = None

    def save_token(self, token: str) -> None:
        self._token = token

    def get_token(self) -> str | None:
        return self._token

    def clear_token(self) -> None:
        self._token = None

    def has_token(self) -> bool:
        return bool(self._token)


class FileTokenStorage:
    def __init__(self, path: str):
        self._persistence = self._build_persistence(path)

    @staticmethod
    def _build_persistence(path: str):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        try:
            return FilePersistenceWithDataProtection(path)
        except Exception:
            return FilePersistence(path)

    @property
    def location(self) -> str:
        return self._persistence.get_location()

    def save_token(self, token: str) -> None:
        self._persistence.save(token)

    def get_token(self) -> str | None:
        try:
            token = self._persistence.load()
        except OSError:
            return None
        return token.strip() or None

    def clear_token(self) -> None:
        self._persistence.save("")

    def has_token(self) -> bool:
        return self.get_token() is not None


class PersistentAuthStore(AuthStore):
    """AuthStore whose token survives restarts through a TokenStorage.

    Only the token is persisted; the record is restored on the next
    ``auth_refresh``.
    """

    def __init__(self, storage: TokenStorage):
        super().__init__()
        self._storage = storage

        stored = storage.get_token()
        if stored:
            logger.debug("Restored auth token from storage")
            self._token = stored

    def save(self, token: str, record: dict[str, Any] | None) -> None:
        if token:
            self._storage.save_token(token)
        else:
            self._storage.clear_token()
        super().save(token, record)
