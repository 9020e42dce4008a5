"""
Exchange adapter facade.

One class serves every exchange: the per-exchange variation lives in the
dialect (endpoints, symbol formats, payload parsing) and in the optional
streaming manager. The adapter adds the cache-first read path and converts
every failure into a typed result, so no public method raises.
"""

import asyncio
import logging
from collections.abc import AsyncIterator

from pydantic import ValidationError

from src.marketfeed.adapters.pipeline import RequestPipeline
from src.marketfeed.cache.cache import TickerCache
from src.marketfeed.config import RateLimitConfig
from src.marketfeed.connection.manager import StreamSubscriptionManager
from src.marketfeed.enums import ConnectionState
from src.marketfeed.errors import MarketFeedError
from src.marketfeed.model.rate_limit import RateLimitUsage
from src.marketfeed.model.ticker import TickerSnapshot
from src.marketfeed.protocols.exchange import ExchangeDialect, TickerCallback

logger = logging.getLogger(__name__)

# Failures that a fetch converts into an ERROR snapshot. ArithmeticError
# covers decimal.InvalidOperation from non-numeric price fields.
_FETCH_ERRORS = (MarketFeedError, ValidationError, ArithmeticError)


class ExchangeAdapter:
    """
    Market data adapter for one exchange.

    Satisfies ExchangeAdapterProtocol through structural typing.
    """

    def __init__(
        self,
        dialect: ExchangeDialect,
        pipeline: RequestPipeline,
        cache: TickerCache,
        streamer: StreamSubscriptionManager | None = None,
        fetch_concurrency: int = 3,
        rate_limit_config: RateLimitConfig | None = None,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            dialect: Exchange REST dialect
            pipeline: Request pipeline bound to this exchange
            cache: Shared market data cache
            streamer: Streaming manager, None where push delivery is unsupported
            fetch_concurrency: In-flight requests allowed during batch fetches
            rate_limit_config: Window length used for usage reporting

        """
        self.dialect = dialect
        self.pipeline = pipeline
        self.cache = cache
        self.streamer = streamer
        self.fetch_concurrency = fetch_concurrency
        self.rate_limit_config = rate_limit_config or RateLimitConfig()

    @property
    def exchange(self) -> str:
        """Uppercase exchange code."""
        return self.dialect.exchange

    @property
    def supports_streaming(self) -> bool:
        """Whether push delivery is available."""
        return self.streamer is not None

    @property
    def streaming_state(self) -> ConnectionState | None:
        """Streaming connection state, None where unsupported."""
        return self.streamer.state if self.streamer is not None else None

    @property
    def subscription_count(self) -> int:
        """Number of live streaming subscriptions."""
        return self.streamer.subscription_count if self.streamer is not None else 0

    async def initialize(self) -> None:
        """Verify the exchange is reachable; never fatal."""
        logger.info(f"Initializing {self.exchange} adapter")
        if await self.is_healthy():
            logger.info(f"{self.exchange} adapter initialized successfully")
        else:
            logger.warning(
                f"{self.exchange} adapter initialization failed - API not responding"
            )

    # -------------------------------------------------------------------------
    # REST
    # -------------------------------------------------------------------------

    async def fetch_ticker(self, symbol: str) -> TickerSnapshot:
        """
        Fetch one ticker, serving from cache when fresh.

        Returns:
            ACTIVE snapshot, or an ERROR snapshot describing the failure

        """
        try:
            wire_symbol = self.dialect.normalize_symbol(symbol)
        except ValueError as e:
            logger.error(f"Rejected ticker request for {self.exchange}: {e}")
            return TickerSnapshot.error(self.exchange, symbol or "", str(e))

        cached = await self.cache.get_ticker(self.exchange, wire_symbol)
        if cached is not None:
            return cached

        path, params = self.dialect.ticker_request(wire_symbol)
        try:
            payload = await self.pipeline.request_json(
                path, params, operation=f"fetch ticker {wire_symbol}"
            )
            snapshot = self.dialect.parse_ticker(payload, wire_symbol)
        except _FETCH_ERRORS as e:
            detail = e.message if isinstance(e, MarketFeedError) else str(e)
            logger.error(f"Failed to fetch ticker {wire_symbol} from {self.exchange}: {detail}")
            return TickerSnapshot.error(
                self.exchange, self.dialect.canonical_symbol(wire_symbol), detail
            )

        await self.cache.put_ticker(snapshot, symbol=wire_symbol)
        return snapshot

    async def fetch_tickers(self, symbols: list[str]) -> AsyncIterator[TickerSnapshot]:
        """
        Fetch many tickers concurrently, yielding each as it completes.

        At most ``fetch_concurrency`` requests are in flight. One failing
        symbol yields an ERROR snapshot and does not affect the others.
        """
        semaphore = asyncio.Semaphore(self.fetch_concurrency)

        async def bounded(symbol: str) -> TickerSnapshot:
            async with semaphore:
                return await self.fetch_ticker(symbol)

        tasks = [asyncio.create_task(bounded(symbol)) for symbol in symbols]
        try:
            for next_done in asyncio.as_completed(tasks):
                yield await next_done
        finally:
            for task in tasks:
                task.cancel()

        logger.debug(f"Fetched {len(symbols)} tickers from {self.exchange}")

    async def is_healthy(self) -> bool:
        """Probe the exchange health endpoint, caching the result."""
        cached = await self.cache.get_health(self.exchange)
        if cached is not None:
            return cached

        healthy = await self.pipeline.probe(self.dialect.health_endpoint)
        await self.cache.put_health(self.exchange, healthy)
        return healthy

    async def get_rate_limit_info(self) -> RateLimitUsage:
        """Current usage of this exchange's request budget."""
        return await self.pipeline.limiter.usage(
            self.exchange,
            self.dialect.max_requests_per_window,
            self.rate_limit_config.window_seconds,
        )

    async def get_supported_symbols(self) -> list[str]:
        """Canonical symbols listed by the exchange, cached; [] on failure."""
        cached = await self.cache.get_symbols(self.exchange)
        if cached is not None:
            return cached

        path, params = self.dialect.symbols_request()
        try:
            payload = await self.pipeline.request_json(
                path, params, operation="fetch supported symbols"
            )
            symbols = self.dialect.parse_symbols(payload)
        except _FETCH_ERRORS as e:
            logger.error(f"Failed to fetch supported symbols from {self.exchange}: {e}")
            return []

        if symbols:
            await self.cache.put_symbols(self.exchange, symbols)
        return symbols

    # -------------------------------------------------------------------------
    # Streaming
    # -------------------------------------------------------------------------

    async def subscribe_to_ticker(self, symbol: str, callback: TickerCallback) -> bool:
        """
        Register for push updates.

        Returns:
            False where streaming is unsupported or the subscription failed

        """
        if self.streamer is None:
            logger.warning(
                f"WebSocket subscription not supported for {self.exchange} symbol: {symbol}"
            )
            return False

        try:
            wire_symbol = self.dialect.normalize_symbol(symbol)
        except ValueError as e:
            logger.error(f"Rejected subscription for {self.exchange}: {e}")
            return False

        return await self.streamer.subscribe(
            wire_symbol, callback, canonical=self.dialect.canonical_symbol(wire_symbol)
        )

    async def unsubscribe_from_ticker(self, symbol: str) -> None:
        """Stop push updates for a symbol."""
        if self.streamer is None:
            logger.warning(
                f"WebSocket unsubscription not supported for {self.exchange} symbol: {symbol}"
            )
            return

        try:
            wire_symbol = self.dialect.normalize_symbol(symbol)
        except ValueError as e:
            logger.error(f"Rejected unsubscription for {self.exchange}: {e}")
            return

        await self.streamer.unsubscribe(wire_symbol)

    async def disconnect(self) -> None:
        """
        Close streaming and evict this exchange's cache entries.

        Rate-limit counters and backoff markers survive a disconnect.
        """
        logger.info(f"Disconnecting from {self.exchange}")
        if self.streamer is not None:
            await self.streamer.disconnect()
        await self.cache.evict_exchange(self.exchange)
