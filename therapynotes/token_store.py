"""Persisted credential slots.

The store is a thin accessor: it knows nothing about expiry or refresh. Only
:class:`therapynotes.tokens.TokenLifecycle` mutates it.
"""

from __future__ import annotations

import json
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from platformdirs import user_data_dir

from therapynotes.config import APP_NAME

logger = structlog.get_logger(__name__)

ID_TOKEN = "authToken"
ACCESS_TOKEN = "accessToken"
REFRESH_TOKEN = "refreshToken"
USER_INFO = "userInfo"

SLOTS = (ID_TOKEN, ACCESS_TOKEN, REFRESH_TOKEN, USER_INFO)

_CREDENTIALS_FILENAME = "credentials.json"


@dataclass(frozen=True)
class CredentialSet:
    id_token: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    cached_profile: Optional[Dict[str, Any]] = None


class TokenStore:
    """In-memory credential slots; each slot holds a string or nothing."""

    def __init__(self) -> None:
        self._slots: Dict[str, str] = {}

    def _check(self, slot: str) -> None:
        if slot not in SLOTS:
            raise KeyError(f"Unknown credential slot: {slot}")

    def get(self, slot: str) -> Optional[str]:
        self._check(slot)
        return self._slots.get(slot)

    def set(self, slot: str, value: str) -> None:
        self._check(slot)
        self._slots[slot] = value
        self._persist()

    def remove(self, slot: str) -> None:
        self._check(slot)
        if self._slots.pop(slot, None) is not None:
            self._persist()

    def clear(self) -> None:
        self._slots.clear()
        self._persist()

    def _persist(self) -> None:
        return None

    def profile(self) -> Optional[Dict[str, Any]]:
        raw = self.get(USER_INFO)
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.error("user_info_unreadable")
            return None
        return data if isinstance(data, dict) else None

    def set_profile(self, profile: Dict[str, Any]) -> None:
        self.set(USER_INFO, json.dumps(profile))

    def credentials(self) -> CredentialSet:
        return CredentialSet(
            id_token=self.get(ID_TOKEN),
            access_token=self.get(ACCESS_TOKEN),
            refresh_token=self.get(REFRESH_TOKEN),
            cached_profile=self.profile(),
        )

    def is_logged_in(self) -> bool:
        return self.get(ID_TOKEN) is not None


class FileTokenStore(TokenStore):
    """Credential slots persisted as JSON in the user data directory."""

    def __init__(self, path: Optional[Path] = None) -> None:
        super().__init__()
        self.path = path or Path(user_data_dir(APP_NAME, APP_NAME)) / _CREDENTIALS_FILENAME
        self._slots = self._load()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("credential_file_unreadable", path=str(self.path))
            return {}
        if not isinstance(data, dict):
            return {}
        return {key: value for key, value in data.items() if key in SLOTS and isinstance(value, str)}

    def _persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._slots), encoding="utf-8")
        try:
            os.chmod(self.path, stat.S_IRUSR | stat.S_IWUSR)
        except OSError:  # pragma: no cover - platform specific
            logger.debug("credential_file_chmod_failed", path=str(self.path))


__all__ = [
    "ACCESS_TOKEN",
    "CredentialSet",
    "FileTokenStore",
    "ID_TOKEN",
    "REFRESH_TOKEN",
    "SLOTS",
    "TokenStore",
    "USER_INFO",
]
