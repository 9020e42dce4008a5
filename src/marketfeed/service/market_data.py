"""
Market data service.

This module provides the exchange-agnostic entry point for the rest of the
application. It owns one adapter per enabled exchange together with the
shared store, rate limiter and cache, and exposes the operational views
(cache health, cache metrics, per-exchange status) used by dashboards.
"""

import logging
from collections.abc import AsyncIterator, Mapping
from datetime import datetime

import httpx

from src.marketfeed.adapters.adapter import ExchangeAdapter
from src.marketfeed.adapters.binance.dialect import BinanceDialect
from src.marketfeed.adapters.bybit.dialect import BybitDialect
from src.marketfeed.adapters.bybit.stream import BybitStreamDialect
from src.marketfeed.adapters.okx.dialect import OkxDialect
from src.marketfeed.adapters.pipeline import RequestPipeline
from src.marketfeed.cache.cache import TickerCache
from src.marketfeed.config import ExchangeEndpoints, FeedConfig, config
from src.marketfeed.connection.manager import ConnectFactory, StreamSubscriptionManager
from src.marketfeed.enums import Exchange
from src.marketfeed.model.rate_limit import RateLimitUsage
from src.marketfeed.model.status import CacheHealth, CacheMetricsSnapshot, ExchangeStatus
from src.marketfeed.model.ticker import TickerSnapshot
from src.marketfeed.protocols.exchange import TickerCallback
from src.marketfeed.protocols.store import CounterStore
from src.marketfeed.ratelimit.limiter import RateLimiter
from src.marketfeed.store.failover import FailoverCounterStore
from src.marketfeed.store.memory import InMemoryCounterStore
from src.marketfeed.store.redis_store import RedisCounterStore

logger = logging.getLogger(__name__)


def endpoints_for(exchange: Exchange, feed_config: FeedConfig) -> ExchangeEndpoints:
    """Endpoint configuration of an exchange."""
    match exchange:
        case Exchange.BINANCE:
            return feed_config.binance
        case Exchange.BYBIT:
            return feed_config.bybit
        case Exchange.OKX:
            return feed_config.okx
        case _:
            raise ValueError(f"Unsupported exchange: {exchange}")


def create_adapter(
    exchange: Exchange,
    feed_config: FeedConfig,
    client: httpx.AsyncClient,
    limiter: RateLimiter,
    cache: TickerCache,
    connect: ConnectFactory | None = None,
) -> ExchangeAdapter:
    """
    Build the adapter for an exchange.

    Args:
        exchange: Exchange to build
        feed_config: Root configuration
        client: HTTP client with the exchange base URL configured
        limiter: Shared rate limiter
        cache: Shared market data cache
        connect: WebSocket connect factory (defaults to ``websockets.connect``)

    Returns:
        Configured adapter

    Raises:
        ValueError: If exchange is not supported

    """
    endpoints = endpoints_for(exchange, feed_config)
    streamer: StreamSubscriptionManager | None = None

    match exchange:
        case Exchange.BINANCE:
            dialect: BinanceDialect | BybitDialect | OkxDialect = BinanceDialect(
                endpoints.max_requests_per_window
            )
        case Exchange.BYBIT:
            dialect = BybitDialect(endpoints.max_requests_per_window)
            if endpoints.ws_url:
                streamer = StreamSubscriptionManager(
                    BybitStreamDialect(),
                    endpoints.ws_url,
                    stream_config=feed_config.stream,
                    connect=connect,
                    sink=lambda snapshot, wire: cache.put_ticker(snapshot, symbol=wire),
                )
        case Exchange.OKX:
            dialect = OkxDialect(endpoints.max_requests_per_window)
        case _:
            raise ValueError(f"Unsupported exchange: {exchange}")

    pipeline = RequestPipeline(
        exchange=dialect.exchange,
        client=client,
        limiter=limiter,
        max_requests_per_window=endpoints.max_requests_per_window,
        rate_limit_config=feed_config.rate_limit,
        retry_config=feed_config.retry,
    )
    return ExchangeAdapter(
        dialect=dialect,
        pipeline=pipeline,
        cache=cache,
        streamer=streamer,
        fetch_concurrency=endpoints.fetch_concurrency,
        rate_limit_config=feed_config.rate_limit,
    )


class MarketDataService:
    """
    Registry of exchange adapters with shared rate limiting and caching.

    Exchange names are case-insensitive. Asking for an exchange that is not
    supported or not enabled raises ValueError; every other failure is
    reported through the returned value, as the adapters do.
    """

    def __init__(
        self,
        adapters: Mapping[Exchange, ExchangeAdapter],
        limiter: RateLimiter,
        cache: TickerCache,
        clients: list[httpx.AsyncClient] | None = None,
    ) -> None:
        """
        Initialize the service.

        Args:
            adapters: Adapter per enabled exchange
            limiter: Shared rate limiter
            cache: Shared market data cache
            clients: HTTP clients closed together with the service

        """
        self.adapters = dict(adapters)
        self.limiter = limiter
        self.cache = cache
        self._clients = clients or []

    def adapter(self, exchange: str | Exchange) -> ExchangeAdapter:
        """
        Look up the adapter for an exchange.

        Raises:
            ValueError: If the exchange is unsupported or not enabled

        """
        key = exchange if isinstance(exchange, Exchange) else Exchange.from_name(exchange)
        adapter = self.adapters.get(key)
        if adapter is None:
            raise ValueError(f"Exchange not enabled: {key.value}")
        return adapter

    @property
    def exchanges(self) -> list[str]:
        """Codes of the enabled exchanges."""
        return [exchange.value for exchange in self.adapters]

    # -------------------------------------------------------------------------
    # Market data
    # -------------------------------------------------------------------------

    async def fetch_ticker(self, exchange: str, symbol: str) -> TickerSnapshot:
        """Fetch one ticker from an exchange."""
        return await self.adapter(exchange).fetch_ticker(symbol)

    def fetch_tickers(self, exchange: str, symbols: list[str]) -> AsyncIterator[TickerSnapshot]:
        """Fetch many tickers from an exchange, yielding as they complete."""
        return self.adapter(exchange).fetch_tickers(symbols)

    async def subscribe_to_ticker(
        self, exchange: str, symbol: str, callback: TickerCallback
    ) -> bool:
        """Register for push updates of a ticker."""
        return await self.adapter(exchange).subscribe_to_ticker(symbol, callback)

    async def unsubscribe_from_ticker(self, exchange: str, symbol: str) -> None:
        """Stop push updates of a ticker."""
        await self.adapter(exchange).unsubscribe_from_ticker(symbol)

    async def is_healthy(self, exchange: str) -> bool:
        """Check whether an exchange is reachable."""
        return await self.adapter(exchange).is_healthy()

    async def get_rate_limit_info(self, exchange: str) -> RateLimitUsage:
        """Current request budget usage of an exchange."""
        return await self.adapter(exchange).get_rate_limit_info()

    async def get_supported_symbols(self, exchange: str) -> list[str]:
        """Symbols listed by an exchange."""
        return await self.adapter(exchange).get_supported_symbols()

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def cache_health(self) -> CacheHealth:
        """Probe the store behind the cache and rate limiter."""
        return await self.cache.is_healthy()

    def cache_metrics(self) -> CacheMetricsSnapshot:
        """Cache hit/miss counters."""
        return self.cache.metrics_snapshot()

    async def exchange_status(self, exchange: str) -> ExchangeStatus:
        """Health, backoff and rate-limit status of an exchange."""
        adapter = self.adapter(exchange)
        backoff_remaining = await self.limiter.get_backoff_time(adapter.exchange)
        state = adapter.streaming_state
        status = ExchangeStatus(
            exchange=adapter.exchange,
            healthy=await adapter.is_healthy(),
            in_backoff=backoff_remaining > 0,
            backoff_remaining_seconds=backoff_remaining,
            rate_limit=await adapter.get_rate_limit_info(),
            degraded=self.limiter.degraded,
            streaming=state.value if state is not None else None,
            subscriptions=adapter.subscription_count,
        )
        logger.debug(status.to_log_entry())
        return status

    async def warm_cache(self, exchange: str | None = None) -> dict[str, int]:
        """
        Prefetch symbol lists and health results.

        Args:
            exchange: Exchange to warm, all enabled exchanges when None

        Returns:
            Number of symbols cached per exchange

        """
        adapters = [self.adapter(exchange)] if exchange else list(self.adapters.values())
        warmed: dict[str, int] = {}
        for adapter in adapters:
            symbols = await adapter.get_supported_symbols()
            await adapter.is_healthy()
            warmed[adapter.exchange] = len(symbols)
            logger.info(f"Warmed cache for {adapter.exchange}: {len(symbols)} symbols")
        await self.cache.mark_warmed()
        return warmed

    async def last_warmed(self) -> datetime | None:
        """When the cache was last warmed."""
        return await self.cache.last_warmed()

    async def initialize_all(self) -> None:
        """Initialize every adapter."""
        for adapter in self.adapters.values():
            await adapter.initialize()

    async def close(self) -> None:
        """Disconnect every adapter and release network resources."""
        for adapter in self.adapters.values():
            await adapter.disconnect()
        for client in self._clients:
            await client.aclose()
        close_store = getattr(self.limiter.store, "close", None)
        if close_store is not None:
            await close_store()
        logger.info(self.cache.metrics.get_statistics())


def create_store(feed_config: FeedConfig) -> CounterStore:
    """Build the Redis store with its in-process fallback."""
    primary = RedisCounterStore.from_url(
        feed_config.store.redis_url,
        key_prefix=feed_config.store.key_prefix,
        socket_timeout=feed_config.store.socket_timeout,
    )
    return FailoverCounterStore(
        primary,
        InMemoryCounterStore(),
        probe_interval=feed_config.store.probe_interval_seconds,
    )


def create_market_data_service(
    feed_config: FeedConfig | None = None,
    store: CounterStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    connect: ConnectFactory | None = None,
) -> MarketDataService:
    """
    Wire up the service for every enabled exchange.

    Args:
        feed_config: Root configuration (the module-level config when None)
        store: Counter store (Redis with in-process fallback when None)
        transport: HTTP transport override, e.g. ``httpx.MockTransport``
        connect: WebSocket connect factory override

    Returns:
        Ready-to-use service

    """
    feed_config = feed_config if feed_config is not None else config
    store = store if store is not None else create_store(feed_config)
    limiter = RateLimiter(store)
    cache = TickerCache(store, feed_config.cache)

    adapters: dict[Exchange, ExchangeAdapter] = {}
    clients: list[httpx.AsyncClient] = []
    for exchange in Exchange:
        endpoints = endpoints_for(exchange, feed_config)
        if not endpoints.enabled:
            logger.info(f"{exchange.value} disabled by configuration")
            continue
        client = httpx.AsyncClient(
            base_url=endpoints.base_url,
            timeout=httpx.Timeout(feed_config.retry.request_timeout),
            transport=transport,
        )
        clients.append(client)
        adapters[exchange] = create_adapter(
            exchange, feed_config, client, limiter, cache, connect=connect
        )

    logger.info(f"Market data service ready for {', '.join(e.value for e in adapters)}")
    return MarketDataService(adapters, limiter, cache, clients=clients)
