"""
In-process counter store.

Per-process fallback used when the shared store is unreachable. It gives the
same atomic-increment-with-expiry semantics as Redis within one event loop,
but it does NOT coordinate across running instances: with N instances the
effective request ceiling is N times the configured one.
"""

import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class InMemoryCounterStore:
    """
    Dictionary-backed store with lazy expiry.

    Expired keys are dropped when touched; nothing runs in the background.
    Every method body runs without awaiting, so each call is atomic with
    respect to other coroutines on the same loop.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        """
        Initialize the store.

        Args:
            clock: Source of the current time in seconds (injectable for tests)

        """
        self._clock = clock
        self._values: dict[str, str] = {}
        self._expires_at: dict[str, float] = {}

    def _purge_if_expired(self, key: str) -> None:
        """Drop a key whose expiry has passed."""
        expires_at = self._expires_at.get(key)
        if expires_at is not None and self._clock() >= expires_at:
            self._values.pop(key, None)
            self._expires_at.pop(key, None)

    async def incr_with_ttl(self, key: str, ttl_seconds: float) -> int:
        """Atomically increment, setting the expiry on first increment."""
        self._purge_if_expired(key)
        count = int(self._values.get(key, "0")) + 1
        self._values[key] = str(count)
        if count == 1:
            self._expires_at[key] = self._clock() + ttl_seconds
        return count

    async def ttl(self, key: str) -> float | None:
        """Get seconds until expiry, or None."""
        self._purge_if_expired(key)
        expires_at = self._expires_at.get(key)
        if expires_at is None:
            return None
        return max(0.0, expires_at - self._clock())

    async def get(self, key: str) -> str | None:
        """Get a value if present and not expired."""
        self._purge_if_expired(key)
        return self._values.get(key)

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        """Set a value with an optional expiry."""
        self._values[key] = value
        if ttl_seconds is None:
            self._expires_at.pop(key, None)
        else:
            self._expires_at[key] = self._clock() + ttl_seconds

    async def delete(self, *keys: str) -> int:
        """Delete keys, returning how many existed."""
        removed = 0
        for key in keys:
            self._purge_if_expired(key)
            if self._values.pop(key, None) is not None:
                removed += 1
            self._expires_at.pop(key, None)
        return removed

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with the prefix."""
        matching = [key for key in self._values if key.startswith(prefix)]
        return await self.delete(*matching)

    async def ping(self) -> bool:
        """Always reachable."""
        return True

    def clear(self) -> None:
        """Drop every key."""
        self._values.clear()
        self._expires_at.clear()

    def __len__(self) -> int:
        """Return number of live keys."""
        for key in list(self._values):
            self._purge_if_expired(key)
        return len(self._values)
