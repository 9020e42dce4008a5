"""
Market feed configuration using Pydantic Settings.

This module provides configuration management for the exchange adapters,
allowing environment-based configuration with type validation and defaults.
"""

import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreConfig(BaseSettings):
    """Shared counter store configuration."""

    model_config = SettingsConfigDict(env_prefix="MARKETFEED_STORE_")

    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = Field(
        default="marketfeed",
        min_length=1,
        description="Prefix prepended to every key written to the store",
    )
    probe_interval_seconds: float = Field(
        default=5.0,
        ge=0.0,
        le=300.0,
        description="How long a store reachability probe result is reused",
    )
    socket_timeout: float = Field(
        default=2.0,
        gt=0.0,
        le=30.0,
        description="Socket timeout for store operations in seconds",
    )


class RateLimitConfig(BaseSettings):
    """Rate limiting and backoff configuration."""

    model_config = SettingsConfigDict(env_prefix="MARKETFEED_RATELIMIT_")

    window_seconds: int = Field(
        default=60,
        ge=1,
        le=3600,
        description="Fixed window length in seconds",
    )
    max_gate_wait_seconds: float = Field(
        default=5.0,
        ge=0.0,
        le=120.0,
        description="Longest delay a caller is made to wait at the rate-limit gate",
    )
    rate_limit_backoff_seconds: int = Field(
        default=60,
        ge=1,
        description="Exchange-wide backoff after an upstream 429",
    )
    temporary_backoff_seconds: int = Field(
        default=30,
        ge=1,
        description="Exchange-wide backoff after a transient upstream failure",
    )


class RetryConfig(BaseSettings):
    """Outbound request retry configuration."""

    model_config = SettingsConfigDict(env_prefix="MARKETFEED_RETRY_")

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum network attempts per request",
    )
    initial_delay: float = Field(
        default=1.0,
        ge=0.0,
        le=30.0,
        description="Delay before the first retry in seconds",
    )
    backoff_factor: float = Field(
        default=2.0,
        ge=1.0,
        le=5.0,
        description="Exponential backoff multiplier",
    )
    request_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="Per-request HTTP timeout in seconds",
    )
    health_timeout: float = Field(
        default=5.0,
        gt=0.0,
        le=30.0,
        description="Timeout for health probes in seconds",
    )


class CacheConfig(BaseSettings):
    """Cache TTL configuration per namespace."""

    model_config = SettingsConfigDict(env_prefix="MARKETFEED_CACHE_")

    ticker_ttl_seconds: float = Field(default=10.0, gt=0.0, le=300.0)
    symbols_ttl_seconds: float = Field(default=6 * 3600.0, gt=0.0)
    health_ttl_seconds: float = Field(default=30.0, gt=0.0, le=600.0)


class StreamConfig(BaseSettings):
    """WebSocket streaming configuration."""

    model_config = SettingsConfigDict(env_prefix="MARKETFEED_STREAM_")

    max_connect_attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Connection attempts before giving up until the next subscribe",
    )
    reconnect_interval: float = Field(
        default=1.0,
        ge=0.0,
        le=10.0,
        description="Initial reconnect interval in seconds",
    )
    max_reconnect_interval: float = Field(
        default=30.0,
        ge=0.0,
        le=300.0,
        description="Maximum reconnect interval in seconds",
    )
    backoff_factor: float = Field(
        default=2.0,
        ge=1.0,
        le=5.0,
        description="Exponential backoff multiplier",
    )
    open_timeout: float = Field(
        default=30.0,
        gt=0.0,
        le=120.0,
        description="Timeout for the WebSocket opening handshake",
    )


class ExchangeEndpoints(BaseSettings):
    """Endpoints and politeness limits for a single exchange."""

    base_url: str
    ws_url: str | None = None
    max_requests_per_window: int = Field(default=600, ge=1)
    fetch_concurrency: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Concurrent requests allowed inside one batch fetch",
    )
    enabled: bool = True


class BinanceConfig(ExchangeEndpoints):
    """Binance spot API configuration."""

    model_config = SettingsConfigDict(env_prefix="MARKETFEED_BINANCE_")

    base_url: str = "https://api.binance.com"
    max_requests_per_window: int = Field(default=1200, ge=1)


class BybitConfig(ExchangeEndpoints):
    """Bybit v5 API configuration."""

    model_config = SettingsConfigDict(env_prefix="MARKETFEED_BYBIT_")

    base_url: str = "https://api.bybit.com"
    ws_url: str | None = "wss://stream.bybit.com/v5/public/spot"
    max_requests_per_window: int = Field(default=120, ge=1)


class OkxConfig(ExchangeEndpoints):
    """OKX v5 API configuration."""

    model_config = SettingsConfigDict(env_prefix="MARKETFEED_OKX_")

    base_url: str = "https://www.okx.com"
    # 20 requests per 2 seconds
    max_requests_per_window: int = Field(default=600, ge=1)


class FeedConfig(BaseSettings):
    """Root configuration combining all sub-configs."""

    model_config = SettingsConfigDict(env_prefix="MARKETFEED_")

    # Sub-configurations
    store: StoreConfig = Field(default_factory=StoreConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    binance: BinanceConfig = Field(default_factory=BinanceConfig)
    bybit: BybitConfig = Field(default_factory=BybitConfig)
    okx: OkxConfig = Field(default_factory=OkxConfig)

    # Global settings
    debug: bool = False
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
    )

    @classmethod
    def from_env(cls) -> "FeedConfig":
        """
        Load configuration from environment variables.

        Returns:
            Configured FeedConfig instance

        """
        return cls(
            store=StoreConfig(),
            rate_limit=RateLimitConfig(),
            retry=RetryConfig(),
            cache=CacheConfig(),
            stream=StreamConfig(),
            binance=BinanceConfig(),
            bybit=BybitConfig(),
            okx=OkxConfig(),
        )


def configure_logging(feed_config: FeedConfig) -> None:
    """Apply the configured log level to the package logger."""
    level = "DEBUG" if feed_config.debug else feed_config.log_level
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger(__name__.rsplit(".", 1)[0]).setLevel(level)


# Global config instance
config = FeedConfig.from_env()
