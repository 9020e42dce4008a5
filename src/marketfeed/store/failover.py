"""
Runtime selection between the shared store and the in-process fallback.

The failover store probes the primary (shared) store at most once per probe
interval. While the probe fails, every operation goes to the in-process
fallback and the store reports itself as degraded so operators can see that
rate limiting no longer coordinates across instances.

When the primary recovers, fallback counters are discarded rather than merged:
the shared store is the only authority on cross-instance counts, and a reset
can at worst allow one extra window's worth of requests from this process.
"""

import logging
import time
from collections.abc import Callable

from src.marketfeed.errors import StoreUnavailableError
from src.marketfeed.protocols.store import CounterStore
from src.marketfeed.store.memory import InMemoryCounterStore

logger = logging.getLogger(__name__)


class FailoverCounterStore:
    """Counter store that falls back to per-process state while degraded."""

    def __init__(
        self,
        primary: CounterStore,
        fallback: InMemoryCounterStore | None = None,
        probe_interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the failover store.

        Args:
            primary: Shared store (normally Redis)
            fallback: Per-process store used while the primary is unreachable
            probe_interval: Seconds a probe result is reused
            clock: Monotonic time source (injectable for tests)

        """
        self.primary = primary
        self.fallback = fallback if fallback is not None else InMemoryCounterStore()
        self.probe_interval = probe_interval
        self._clock = clock
        self._degraded = False
        self._last_probe: float | None = None

    @property
    def degraded(self) -> bool:
        """Whether operations are currently served by the fallback."""
        return self._degraded

    @property
    def name(self) -> str:
        """Name of the store currently in use."""
        return self.fallback.name if self._degraded else self.primary.name

    async def _active(self) -> CounterStore:
        """Return the store to use, re-probing the primary when due."""
        now = self._clock()
        if self._last_probe is None or now - self._last_probe >= self.probe_interval:
            self._last_probe = now
            reachable = await self.primary.ping()

            if not reachable and not self._degraded:
                self._degraded = True
                logger.warning(
                    f"Shared store '{self.primary.name}' unreachable; "
                    "degraded mode: per-process counters do not coordinate "
                    "across instances"
                )
            elif reachable and self._degraded:
                self._degraded = False
                self.fallback.clear()
                logger.info(
                    f"Shared store '{self.primary.name}' recovered; "
                    "local fallback counters reset"
                )

        return self.fallback if self._degraded else self.primary

    def _invalidate_probe(self, error: StoreUnavailableError) -> None:
        """Force a fresh probe on the next operation."""
        logger.error(f"Shared store operation failed: {error}")
        self._last_probe = None

    async def incr_with_ttl(self, key: str, ttl_seconds: float) -> int:
        """Atomically increment on the active store."""
        store = await self._active()
        try:
            return await store.incr_with_ttl(key, ttl_seconds)
        except StoreUnavailableError as e:
            self._invalidate_probe(e)
            raise

    async def ttl(self, key: str) -> float | None:
        """Get remaining TTL on the active store."""
        store = await self._active()
        try:
            return await store.ttl(key)
        except StoreUnavailableError as e:
            self._invalidate_probe(e)
            raise

    async def get(self, key: str) -> str | None:
        """Get a value from the active store."""
        store = await self._active()
        try:
            return await store.get(key)
        except StoreUnavailableError as e:
            self._invalidate_probe(e)
            raise

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        """Set a value on the active store."""
        store = await self._active()
        try:
            await store.set(key, value, ttl_seconds)
        except StoreUnavailableError as e:
            self._invalidate_probe(e)
            raise

    async def delete(self, *keys: str) -> int:
        """Delete keys on the active store."""
        store = await self._active()
        try:
            return await store.delete(*keys)
        except StoreUnavailableError as e:
            self._invalidate_probe(e)
            raise

    async def delete_prefix(self, prefix: str) -> int:
        """Delete keys by prefix on the active store."""
        store = await self._active()
        try:
            return await store.delete_prefix(prefix)
        except StoreUnavailableError as e:
            self._invalidate_probe(e)
            raise

    async def ping(self) -> bool:
        """Probe the primary store directly."""
        return await self.primary.ping()

    async def close(self) -> None:
        """Close the primary store's connections."""
        close = getattr(self.primary, "close", None)
        if close is not None:
            await close()
