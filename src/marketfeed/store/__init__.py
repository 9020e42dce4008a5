"""Counter stores backing rate limiting and caching."""

from src.marketfeed.store.failover import FailoverCounterStore
from src.marketfeed.store.memory import InMemoryCounterStore
from src.marketfeed.store.redis_store import RedisCounterStore

__all__ = [
    "FailoverCounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
]
