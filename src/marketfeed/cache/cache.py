"""
Namespaced TTL cache over the counter store.

Entries are stored as JSON envelopes ``{"expires_at": ..., "value": ...}``
under ``<namespace>:<EXCHANGE>[:<SYMBOL>]``. Expiry is checked on read, so an
entry the store has not evicted yet is still a miss once its deadline passes.

Store failures never reach callers: a failed read is a miss and a failed
write is dropped, both logged at warning level.
"""

import json
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import TypeAdapter, ValidationError

from src.marketfeed.cache.metrics import CacheMetrics
from src.marketfeed.config import CacheConfig
from src.marketfeed.enums import CacheNamespace
from src.marketfeed.errors import StoreUnavailableError
from src.marketfeed.model.status import CacheHealth, CacheMetricsSnapshot
from src.marketfeed.model.ticker import TickerSnapshot
from src.marketfeed.protocols.store import CounterStore

logger = logging.getLogger(__name__)

_SYMBOL_LIST = TypeAdapter(list[str])

_HEALTH_PROBE_KEY = "health:__probe__"
_LAST_WARMED_KEY = "meta:last_warmed"


class TickerCache:
    """
    Cache for tickers, symbol lists and health results.

    Every ``get`` records exactly one hit or one miss.
    """

    def __init__(
        self,
        store: CounterStore,
        cache_config: CacheConfig | None = None,
        metrics: CacheMetrics | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the cache.

        Args:
            store: Counter store holding the entries
            cache_config: Per-namespace TTLs
            metrics: Hit/miss counters (a fresh set when omitted)
            clock: Wall-clock source in epoch seconds (injectable for tests)

        """
        self.store = store
        self.cache_config = cache_config or CacheConfig()
        self.metrics = metrics or CacheMetrics()
        self._clock = clock

    def ttl_for(self, namespace: CacheNamespace) -> float:
        """TTL in seconds configured for a namespace."""
        match namespace:
            case CacheNamespace.TICKER:
                return self.cache_config.ticker_ttl_seconds
            case CacheNamespace.SYMBOLS:
                return self.cache_config.symbols_ttl_seconds
            case CacheNamespace.HEALTH:
                return self.cache_config.health_ttl_seconds

    @staticmethod
    def make_key(namespace: CacheNamespace, exchange: str, symbol: str | None = None) -> str:
        """Build the store key for an entry."""
        key = f"{namespace.value}:{exchange.upper()}"
        if symbol is not None:
            key = f"{key}:{symbol}"
        return key

    # -------------------------------------------------------------------------
    # Generic operations
    # -------------------------------------------------------------------------

    async def get(
        self, namespace: CacheNamespace, exchange: str, symbol: str | None = None
    ) -> Any | None:
        """
        Read an entry.

        Returns:
            The stored JSON value, or None on a miss

        """
        key = self.make_key(namespace, exchange, symbol)
        try:
            raw = await self.store.get(key)
        except StoreUnavailableError as e:
            logger.warning(f"Cache read failed for {key}, treating as miss: {e}")
            self.metrics.record_miss()
            return None

        if raw is None:
            logger.debug(f"Cache miss: {key}")
            self.metrics.record_miss()
            return None

        try:
            envelope = json.loads(raw)
            expires_at = float(envelope["expires_at"])
            value = envelope["value"]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable cache entry {key}: {e}")
            self.metrics.record_miss()
            return None

        if self._clock() >= expires_at:
            logger.debug(f"Cache entry expired: {key}")
            self.metrics.record_miss()
            return None

        logger.debug(f"Cache hit: {key}")
        self.metrics.record_hit()
        return value

    async def put(
        self,
        namespace: CacheNamespace,
        exchange: str,
        value: Any,
        symbol: str | None = None,
    ) -> None:
        """Write an entry with its namespace TTL."""
        key = self.make_key(namespace, exchange, symbol)
        ttl = self.ttl_for(namespace)
        envelope = json.dumps({"expires_at": self._clock() + ttl, "value": value})
        try:
            await self.store.set(key, envelope, ttl_seconds=ttl)
        except StoreUnavailableError as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    async def evict(
        self, namespace: CacheNamespace, exchange: str, symbol: str | None = None
    ) -> None:
        """Remove one entry."""
        key = self.make_key(namespace, exchange, symbol)
        try:
            await self.store.delete(key)
        except StoreUnavailableError as e:
            logger.warning(f"Cache evict failed for {key}: {e}")

    async def evict_exchange(self, exchange: str) -> int:
        """
        Remove every ticker, symbol-list and health entry of an exchange.

        Rate-limit counters and backoff markers are not cache entries and
        are left untouched.

        Returns:
            Number of entries removed

        """
        removed = 0
        exchange = exchange.upper()
        try:
            for namespace in CacheNamespace:
                prefix = f"{namespace.value}:{exchange}"
                removed += await self.store.delete(prefix)
                removed += await self.store.delete_prefix(f"{prefix}:")
        except StoreUnavailableError as e:
            logger.warning(f"Cache eviction failed for {exchange}: {e}")
            return removed

        logger.info(f"Evicted {removed} cache entries for {exchange}")
        return removed

    # -------------------------------------------------------------------------
    # Typed helpers
    # -------------------------------------------------------------------------

    async def get_ticker(self, exchange: str, symbol: str) -> TickerSnapshot | None:
        """Read a cached ticker snapshot."""
        value = await self.get(CacheNamespace.TICKER, exchange, symbol)
        if value is None:
            return None
        try:
            return TickerSnapshot.model_validate(value)
        except ValidationError as e:
            logger.warning(f"Discarding invalid cached ticker {exchange}:{symbol}: {e}")
            return None

    async def put_ticker(self, snapshot: TickerSnapshot, symbol: str | None = None) -> None:
        """
        Cache a ticker snapshot.

        Args:
            snapshot: Snapshot to cache; ERROR snapshots are never cached
            symbol: Cache key symbol when it differs from ``snapshot.symbol``

        """
        if snapshot.is_error:
            return
        await self.put(
            CacheNamespace.TICKER,
            snapshot.exchange,
            snapshot.model_dump(mode="json"),
            symbol=symbol or snapshot.symbol,
        )

    async def get_symbols(self, exchange: str) -> list[str] | None:
        """Read a cached symbol list."""
        value = await self.get(CacheNamespace.SYMBOLS, exchange)
        if value is None:
            return None
        try:
            return _SYMBOL_LIST.validate_python(value)
        except ValidationError as e:
            logger.warning(f"Discarding invalid cached symbols for {exchange}: {e}")
            return None

    async def put_symbols(self, exchange: str, symbols: list[str]) -> None:
        """Cache a symbol list."""
        await self.put(CacheNamespace.SYMBOLS, exchange, list(symbols))

    async def get_health(self, exchange: str) -> bool | None:
        """Read a cached health result."""
        value = await self.get(CacheNamespace.HEALTH, exchange)
        return None if value is None else bool(value)

    async def put_health(self, exchange: str, healthy: bool) -> None:
        """Cache a health result."""
        await self.put(CacheNamespace.HEALTH, exchange, healthy)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def is_healthy(self) -> CacheHealth:
        """Probe the store with a set/get/delete round trip."""
        token = repr(self._clock())
        healthy = False
        try:
            await self.store.set(_HEALTH_PROBE_KEY, token, ttl_seconds=10)
            healthy = await self.store.get(_HEALTH_PROBE_KEY) == token
            await self.store.delete(_HEALTH_PROBE_KEY)
        except StoreUnavailableError as e:
            logger.error(f"Cache health check failed: {e}")

        return CacheHealth(
            healthy=healthy,
            degraded=bool(getattr(self.store, "degraded", False)),
            backend=self.store.name,
            checked_at=datetime.fromtimestamp(self._clock(), UTC),
        )

    async def mark_warmed(self) -> None:
        """Record the time of the last warm-up."""
        try:
            await self.store.set(_LAST_WARMED_KEY, repr(self._clock()))
        except StoreUnavailableError as e:
            logger.warning(f"Failed to record cache warm-up: {e}")

    async def last_warmed(self) -> datetime | None:
        """Time of the last warm-up, if any."""
        try:
            value = await self.store.get(_LAST_WARMED_KEY)
        except StoreUnavailableError as e:
            logger.warning(f"Failed to read cache warm-up marker: {e}")
            return None
        return datetime.fromtimestamp(float(value), UTC) if value else None

    def metrics_snapshot(self) -> CacheMetricsSnapshot:
        """Current hit/miss counters."""
        return self.metrics.snapshot()
