"""Request rate limiting and exchange backoff."""

from src.marketfeed.ratelimit.limiter import RateLimiter, exchange_key

__all__ = ["RateLimiter", "exchange_key"]
