"""
Counter Store Protocol.

The shared state behind rate-limit counters, backoff markers and cache
entries. Implementations must give identical atomic-increment-with-expiry
semantics whether they coordinate across processes (Redis) or not
(in-process fallback).
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class CounterStore(Protocol):
    """
    Protocol for a small keyed store with per-key expiry.

    Semantic Role: Shared coordination state
    Relationships:
    - Used by: RateLimiter (counters, backoff), TickerCache (entries)
    - Guarantee: ``incr_with_ttl`` is atomic; no read-modify-write races

    All methods may raise StoreUnavailableError when the backend cannot be
    reached.
    """

    name: str

    async def incr_with_ttl(self, key: str, ttl_seconds: float) -> int:
        """
        Atomically increment a counter.

        The expiry is set only when the increment creates the key (the first
        increment of a window); later increments leave it untouched.

        Args:
            key: Counter key
            ttl_seconds: Expiry applied on first increment

        Returns:
            Counter value after the increment

        """
        ...

    async def ttl(self, key: str) -> float | None:
        """
        Get remaining time to live.

        Returns:
            Seconds until expiry, or None if the key is missing or has no expiry

        """
        ...

    async def get(self, key: str) -> str | None:
        """Get a string value, or None if missing or expired."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        """Set a string value with an optional expiry."""
        ...

    async def delete(self, *keys: str) -> int:
        """Delete keys, returning how many existed."""
        ...

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``, returning the count."""
        ...

    async def ping(self) -> bool:
        """Check whether the backend is reachable."""
        ...
