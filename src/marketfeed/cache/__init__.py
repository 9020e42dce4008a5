"""Namespaced market data cache."""

from src.marketfeed.cache.cache import TickerCache
from src.marketfeed.cache.metrics import CacheMetrics

__all__ = ["CacheMetrics", "TickerCache"]
