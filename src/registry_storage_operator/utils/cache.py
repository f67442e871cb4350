"""TTL cache owned by the object that uses it."""

from __future__ import annotations

import time
from typing import Any, Callable, Optional


class TTLCache:
    """Small key/value cache whose entries expire after ``ttl`` seconds.

    Each driver instance owns its own cache; nothing is shared process-wide.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}

    def get(self, key: str) -> Optional[Any]:
        """Get a value if it hasn't expired.

        Args:
            key: Cache key

        Returns:
            Cached value or None if not found or expired
        """
        if key not in self._entries:
            return None

        value, timestamp = self._entries[key]
        if self._clock() - timestamp > self.ttl:
            del self._entries[key]
            return None

        return value

    def set(self, key: str, value: Any) -> None:
        """Store a value with the current timestamp."""
        self._entries[key] = (value, self._clock())

    def invalidate(self, key: Optional[str] = None) -> None:
        """Drop one entry, or all entries when ``key`` is None."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)


def make_cache_key(*parts: str) -> str:
    """Create a cache key from its parts."""
    return ":".join(parts)
