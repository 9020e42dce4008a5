"""
Redis-backed counter store.

The shared store every process instance coordinates through. Counter
increments and their first-write expiry run as one Lua script so concurrent
instances never race between INCR and EXPIRE.
"""

import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

from src.marketfeed.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

# INCR and set expiry only when the key was just created
_INCR_WITH_TTL = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
end
return count
"""

_SCAN_BATCH = 500


class RedisCounterStore:
    """Counter store backed by ``redis.asyncio``."""

    name = "redis"

    def __init__(self, client: Redis, key_prefix: str = "marketfeed") -> None:
        """
        Initialize the store.

        Args:
            client: Async Redis client created with ``decode_responses=True``
            key_prefix: Namespace prepended to every key

        """
        self._client = client
        self._key_prefix = key_prefix

    @classmethod
    def from_url(
        cls, url: str, key_prefix: str = "marketfeed", socket_timeout: float = 2.0
    ) -> "RedisCounterStore":
        """Create a store from a Redis URL."""
        client = Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, key_prefix=key_prefix)

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}"

    async def incr_with_ttl(self, key: str, ttl_seconds: float) -> int:
        """Atomically increment, setting the expiry on first increment."""
        try:
            count = await self._client.eval(
                _INCR_WITH_TTL, 1, self._key(key), int(ttl_seconds * 1000)
            )
        except RedisError as e:
            raise StoreUnavailableError(f"Failed to increment {key}: {e}") from e
        return int(count)

    async def ttl(self, key: str) -> float | None:
        """Get seconds until expiry, or None."""
        try:
            remaining_ms = await self._client.pttl(self._key(key))
        except RedisError as e:
            raise StoreUnavailableError(f"Failed to read TTL of {key}: {e}") from e
        # -2: missing key, -1: no expiry
        if remaining_ms is None or remaining_ms < 0:
            return None
        return remaining_ms / 1000

    async def get(self, key: str) -> str | None:
        """Get a string value."""
        try:
            value = await self._client.get(self._key(key))
        except RedisError as e:
            raise StoreUnavailableError(f"Failed to read {key}: {e}") from e
        return None if value is None else str(value)

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        """Set a string value with an optional expiry."""
        try:
            if ttl_seconds is None:
                await self._client.set(self._key(key), value)
            else:
                await self._client.set(
                    self._key(key), value, px=max(1, int(ttl_seconds * 1000))
                )
        except RedisError as e:
            raise StoreUnavailableError(f"Failed to write {key}: {e}") from e

    async def delete(self, *keys: str) -> int:
        """Delete keys, returning how many existed."""
        if not keys:
            return 0
        try:
            return int(await self._client.delete(*(self._key(k) for k in keys)))
        except RedisError as e:
            raise StoreUnavailableError(f"Failed to delete keys: {e}") from e

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with the prefix, in SCAN batches."""
        removed = 0
        batch: list[str] = []
        try:
            async for key in self._client.scan_iter(
                match=f"{self._key(prefix)}*", count=_SCAN_BATCH
            ):
                batch.append(key)
                if len(batch) >= _SCAN_BATCH:
                    removed += int(await self._client.delete(*batch))
                    batch = []
            if batch:
                removed += int(await self._client.delete(*batch))
        except RedisError as e:
            raise StoreUnavailableError(f"Failed to delete prefix {prefix}: {e}") from e
        return removed

    async def ping(self) -> bool:
        """Check Redis reachability."""
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        """Close the underlying connection pool."""
        await self._client.aclose()
