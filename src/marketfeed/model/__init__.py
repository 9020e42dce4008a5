"""Market feed models."""

from src.marketfeed.model.rate_limit import RateLimitState, RateLimitUsage
from src.marketfeed.model.status import (
    CacheHealth,
    CacheMetricsSnapshot,
    ExchangeStatus,
)
from src.marketfeed.model.ticker import TickerSnapshot

__all__ = [
    "CacheHealth",
    "CacheMetricsSnapshot",
    "ExchangeStatus",
    "RateLimitState",
    "RateLimitUsage",
    "TickerSnapshot",
]
