"""In-process snapshot cache with per-entry expiry.

Read models (day status, portfolios, leaderboard) are cached here and
invalidated by the operations that change them.
"""

import threading
import time
from collections.abc import Callable
from typing import Any

CURRENT_DAY_KEY = "system:current_day"
LEADERBOARD_KEY = "leaderboard:current"
PORTFOLIO_PREFIX = "portfolio:user:"
PRICES_PREFIX = "prices:day:"


def portfolio_key(participant_id: str) -> str:
    return f"{PORTFOLIO_PREFIX}{participant_id}"


def prices_key(day: int) -> str:
    return f"{PRICES_PREFIX}{day}"


class SnapshotCache:
    """Thread-safe key/value cache with optional TTL per entry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._store: dict[str, tuple[Any, float | None]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None if missing or expired."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= self._clock():
                del self._store[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Store a value; a falsy TTL means no expiry."""
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        with self._lock:
            self._store[key] = (value, expires_at)

    def delete(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._store.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        """Drop every key starting with ``prefix``.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            doomed = [key for key in self._store if key.startswith(prefix)]
            for key in doomed:
                del self._store[key]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
