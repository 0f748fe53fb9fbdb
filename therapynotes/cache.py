"""In-memory TTL cache for slow-changing reads (client list, settings)."""

from __future__ import annotations

import copy
import time
from typing import Any, Callable, Dict, Optional, Tuple

CLIENTS_KEY = "clients"
CLIENTS_TTL = 5 * 60
SETTINGS_TTL = 30 * 60


def settings_key(settings_type: str) -> str:
    return f"settings:{settings_type}"


class ResponseCache:
    """Maps keys to ``(expires_at, value)``; expired entries read as missing.

    Values are copied on the way in and out, so callers never share state
    with the cache.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return copy.deepcopy(value)

    def set(self, key: str, value: Any, ttl: float) -> None:
        self._entries[key] = (self._clock() + ttl, copy.deepcopy(value))

    def invalidate(self, *keys: str) -> None:
        for key in keys:
            self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> None:
        for key in [k for k in self._entries if k.startswith(prefix)]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["CLIENTS_KEY", "CLIENTS_TTL", "ResponseCache", "SETTINGS_TTL", "settings_key"]
