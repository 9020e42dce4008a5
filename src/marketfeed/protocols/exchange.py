"""
Exchange Protocol Layer for the Market Feed.

This module defines the contracts between callers, the shared adapter
machinery and the per-exchange integrations.

Key design principles:
- Callers see one capability set (ExchangeAdapterProtocol) for every exchange
- The shared request pipeline is composed into adapters, not inherited
- Each exchange supplies only what truly varies (ExchangeDialect,
  StreamDialect): endpoints, symbol formats and payload parsing
- Public adapter methods never raise; failures become typed results
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from typing import Any, Protocol, runtime_checkable

from src.marketfeed.model.rate_limit import RateLimitUsage
from src.marketfeed.model.ticker import TickerSnapshot

TickerCallback = Callable[[TickerSnapshot], Awaitable[None] | None]


# =============================================================================
# CALLER-FACING PROTOCOL
# =============================================================================


@runtime_checkable
class ExchangeAdapterProtocol(Protocol):
    """
    Uniform market-data capability set implemented for every exchange.

    Semantic Role: Boundary between the application and upstream exchanges
    Relationships:
    - Composes: RequestPipeline, ExchangeDialect, StreamSubscriptionManager
    - Guarantee: No method lets an exception escape
    """

    @property
    def exchange(self) -> str:
        """Uppercase exchange code."""
        ...

    async def initialize(self) -> None:
        """Verify reachability; failure is logged, never fatal."""
        ...

    async def fetch_ticker(self, symbol: str) -> TickerSnapshot:
        """Fetch one ticker, cache first; ERROR snapshot on failure."""
        ...

    def fetch_tickers(self, symbols: list[str]) -> AsyncIterator[TickerSnapshot]:
        """Fetch many tickers with bounded concurrency, yielding as they finish."""
        ...

    async def subscribe_to_ticker(self, symbol: str, callback: TickerCallback) -> bool:
        """Register for push updates; returns False where unsupported or failed."""
        ...

    async def unsubscribe_from_ticker(self, symbol: str) -> None:
        """Stop push updates for a symbol."""
        ...

    async def is_healthy(self) -> bool:
        """Cached lightweight reachability probe."""
        ...

    async def get_rate_limit_info(self) -> RateLimitUsage:
        """Current usage of the exchange's request budget."""
        ...

    async def get_supported_symbols(self) -> list[str]:
        """Canonical symbols listed by the exchange; empty list on failure."""
        ...

    async def disconnect(self) -> None:
        """Release streaming resources and invalidate cached entries."""
        ...


# =============================================================================
# PER-EXCHANGE VARIATION POINTS
# =============================================================================


@runtime_checkable
class ExchangeDialect(Protocol):
    """
    REST dialect of one exchange.

    Semantic Role: Translation between canonical requests and exchange wire format
    Relationships:
    - Used by: RequestPipeline (endpoints, parsing), ExchangeAdapter
    - Constraint: ``normalize_symbol`` is idempotent and runs before any
      cache lookup or network call, so cache keys stay consistent
    """

    exchange: str
    health_endpoint: str
    max_requests_per_window: int

    def normalize_symbol(self, symbol: str) -> str:
        """
        Convert any accepted representation to the exchange wire form.

        Raises:
            ValueError: If the symbol is empty

        """
        ...

    def canonical_symbol(self, wire_symbol: str) -> str:
        """Convert a wire symbol to the canonical ``BASE/QUOTE`` form."""
        ...

    def ticker_request(self, wire_symbol: str) -> tuple[str, Mapping[str, str]]:
        """Path and query parameters for a single ticker."""
        ...

    def parse_ticker(self, payload: Any, wire_symbol: str) -> TickerSnapshot:
        """
        Parse a ticker response body.

        Raises:
            ResponseFormatError: If the payload has an unexpected shape

        """
        ...

    def symbols_request(self) -> tuple[str, Mapping[str, str]]:
        """Path and query parameters for the instrument list."""
        ...

    def parse_symbols(self, payload: Any) -> list[str]:
        """
        Parse the instrument list into canonical symbols.

        Raises:
            ResponseFormatError: If the payload has an unexpected shape

        """
        ...


@runtime_checkable
class StreamDialect(Protocol):
    """
    WebSocket dialect of a push-capable exchange.

    Semantic Role: Protocol messages and frame parsing for streaming
    Relationships:
    - Used by: StreamSubscriptionManager
    - Constraint: ``parse_message`` returns None for frames that carry no
      ticker (acks, heartbeats) and raises on malformed ticker frames
    """

    exchange: str

    def subscribe_message(self, wire_symbol: str) -> str:
        """Text frame that subscribes to a symbol's ticker."""
        ...

    def unsubscribe_message(self, wire_symbol: str) -> str:
        """Text frame that unsubscribes from a symbol's ticker."""
        ...

    def parse_message(self, raw: str) -> tuple[str, TickerSnapshot] | None:
        """Parse a frame into ``(wire_symbol, snapshot)`` or None."""
        ...
