"""Binance spot REST dialect."""

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from src.marketfeed.adapters.binance.data import BinanceExchangeInfo, BinanceTicker24h
from src.marketfeed.enums import Exchange
from src.marketfeed.errors import ResponseFormatError
from src.marketfeed.model.ticker import TickerSnapshot
from src.marketfeed.symbols import canonical_symbol, require_symbol

logger = logging.getLogger(__name__)

TICKER_ENDPOINT = "/api/v3/ticker/24hr"
PING_ENDPOINT = "/api/v3/ping"
EXCHANGE_INFO_ENDPOINT = "/api/v3/exchangeInfo"


class BinanceDialect:
    """
    Binance uses concatenated symbols (``BTCUSDT``).

    No streaming dialect: Binance subscriptions are reported as unsupported.
    """

    exchange = Exchange.BINANCE.value
    health_endpoint = PING_ENDPOINT

    def __init__(self, max_requests_per_window: int = 1200) -> None:
        """Initialize with the request ceiling per window."""
        self.max_requests_per_window = max_requests_per_window

    def normalize_symbol(self, symbol: str) -> str:
        """Strip separators and uppercase: ``btc/usdt`` -> ``BTCUSDT``."""
        cleaned = require_symbol(symbol)
        return cleaned.replace("/", "").replace("-", "").replace(".", "")

    def canonical_symbol(self, wire_symbol: str) -> str:
        """``BTCUSDT`` -> ``BTC/USDT``."""
        return canonical_symbol(wire_symbol)

    def ticker_request(self, wire_symbol: str) -> tuple[str, Mapping[str, str]]:
        """Ticker path and query."""
        return TICKER_ENDPOINT, {"symbol": wire_symbol}

    def parse_ticker(self, payload: Any, wire_symbol: str) -> TickerSnapshot:
        """Parse a 24hr ticker body."""
        try:
            ticker = BinanceTicker24h.model_validate(payload)
        except ValidationError as e:
            raise ResponseFormatError(
                f"Invalid ticker response for {wire_symbol}: missing required fields",
                self.exchange,
            ) from e

        logger.debug(
            f"Parsed Binance ticker - Symbol: {wire_symbol}, Price: {ticker.price}, "
            f"Volume: {ticker.volume}, Change: {ticker.change_percent}%"
        )
        return TickerSnapshot(
            exchange=self.exchange,
            symbol=self.canonical_symbol(wire_symbol),
            price=ticker.price,
            bid=ticker.bid,
            ask=ticker.ask,
            volume_24h=ticker.volume,
            change_24h=ticker.change_percent,
        )

    def symbols_request(self) -> tuple[str, Mapping[str, str]]:
        """Exchange info path; the response lists every symbol."""
        return EXCHANGE_INFO_ENDPOINT, {}

    def parse_symbols(self, payload: Any) -> list[str]:
        """Parse ``exchangeInfo`` into canonical symbols."""
        try:
            info = BinanceExchangeInfo.model_validate(payload)
        except ValidationError as e:
            raise ResponseFormatError(
                "Invalid exchange info response", self.exchange
            ) from e
        return [
            self._canonical_from_info(s.symbol, s.base_asset, s.quote_asset)
            for s in info.symbols
        ]

    def _canonical_from_info(
        self, symbol: str, base: str | None, quote: str | None
    ) -> str:
        if base and quote:
            return f"{base.upper()}/{quote.upper()}"
        return self.canonical_symbol(symbol)
