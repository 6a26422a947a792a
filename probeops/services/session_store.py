"""Durable key-value persistence of the signed-in user and bearer token."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from probeops.domain.models import UserModel
from probeops.logging import logger

USER_KEY = "user"
TOKEN_KEY = "jwt_token"
FIRST_API_KEY = "first_api_key"


class KeyValueStorage(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class FileStorage:
    """All entries live in one JSON document, rewritten atomically on change."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

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

    def _read(self) -> dict[str, object]:
        try:
            with self.path.open("r", encoding="utf-8") as fp:
                data = json.load(fp)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning("session_storage_unreadable", path=str(self.path), error=str(exc))
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, object]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".session-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fp:
                json.dump(data, fp, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


@dataclass(frozen=True, slots=True)
class StoredSession:
    user: UserModel | None = None
    token: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.user is None or self.token is None


class SessionStore:
    def __init__(self, storage: KeyValueStorage) -> None:
        self._storage = storage

    def save(self, user: UserModel, token: str) -> None:
        self.save_user(user)
        self._storage.set(TOKEN_KEY, token)

    def save_user(self, user: UserModel) -> None:
        self._storage.set(USER_KEY, user.model_dump_json())

    def load(self) -> StoredSession:
        token = self._safe_get(TOKEN_KEY)
        raw_user = self._safe_get(USER_KEY)
        if not token or not raw_user:
            return StoredSession()
        try:
            user = UserModel.model_validate_json(raw_user)
        except ValidationError as exc:
            logger.warning("stored_user_invalid", error_count=exc.error_count())
            return StoredSession()
        return StoredSession(user=user, token=token)

    def token(self) -> str | None:
        return self._safe_get(TOKEN_KEY) or None

    def clear(self) -> None:
        self._storage.remove(TOKEN_KEY)
        self._storage.remove(USER_KEY)

    def save_first_api_key(self, api_key: str) -> None:
        self._storage.set(FIRST_API_KEY, api_key)

    def first_api_key(self) -> str | None:
        return self._safe_get(FIRST_API_KEY)

    def pop_first_api_key(self) -> str | None:
        """Return the post-registration key once, then forget it."""

        value = self._safe_get(FIRST_API_KEY)
        if value is not None:
            self._storage.remove(FIRST_API_KEY)
        return value

    def _safe_get(self, key: str) -> str | None:
        try:
            return self._storage.get(key)
        except OSError as exc:
            logger.warning("session_storage_read_failed", key=key, error=str(exc))
            return None


__all__ = [
    "FileStorage",
    "KeyValueStorage",
    "MemoryStorage",
    "SessionStore",
    "StoredSession",
]
