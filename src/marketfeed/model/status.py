"""
Operational status models.

These models back the dashboard-facing read endpoints: cache health, cache
hit/miss metrics and the per-exchange backoff and rate-limit status.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from src.marketfeed.model.rate_limit import RateLimitUsage


class CacheMetricsSnapshot(BaseModel):
    """Cache hit/miss counters at a point in time."""

    model_config = ConfigDict(frozen=True)

    hits: int = Field(default=0, ge=0, description="Number of cache hits")
    misses: int = Field(default=0, ge=0, description="Number of cache misses")
    hit_rate: float = Field(default=0.0, ge=0.0, le=1.0, description="Hits / total")

    @property
    def total(self) -> int:
        """Total number of cache reads."""
        return self.hits + self.misses

    def to_summary(self) -> str:
        """Generate human-readable summary."""
        return (
            f"Cache Stats: Hits={self.hits}, Misses={self.misses}, "
            f"Total={self.total}, Hit Rate={self.hit_rate * 100:.2f}%"
        )


class CacheHealth(BaseModel):
    """Reachability of the shared store behind the cache and rate limiter."""

    model_config = ConfigDict(frozen=True)

    healthy: bool = Field(description="Whether a store round trip succeeded")
    degraded: bool = Field(
        default=False,
        description="Whether rate limiting has fallen back to per-process counters",
    )
    backend: str = Field(description="Name of the store currently in use")
    checked_at: datetime = Field(description="When the probe ran")


class ExchangeStatus(BaseModel):
    """Backoff and rate-limit status for one exchange."""

    model_config = ConfigDict(frozen=True)

    exchange: str
    healthy: bool
    in_backoff: bool
    backoff_remaining_seconds: float = Field(default=0.0, ge=0.0)
    rate_limit: RateLimitUsage
    degraded: bool = False
    streaming: str | None = Field(
        default=None, description="Streaming connection state, if supported"
    )
    subscriptions: int = Field(default=0, ge=0)

    def to_log_entry(self) -> str:
        """Generate log-friendly representation."""
        backoff = (
            f" backoff={self.backoff_remaining_seconds:.0f}s" if self.in_backoff else ""
        )
        return (
            f"[{self.exchange}] healthy={self.healthy} "
            f"usage={self.rate_limit.usage_percentage}%"
            f" ({self.rate_limit.status.value}){backoff}"
        )
