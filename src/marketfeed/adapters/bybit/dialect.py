"""Bybit v5 spot REST dialect."""

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from src.marketfeed.adapters.bybit.data import (
    BybitInstrumentList,
    BybitResponse,
    BybitTickerData,
    BybitTickerList,
)
from src.marketfeed.enums import Exchange
from src.marketfeed.errors import ResponseFormatError
from src.marketfeed.model.ticker import TickerSnapshot
from src.marketfeed.symbols import canonical_symbol, require_symbol

logger = logging.getLogger(__name__)

TICKER_ENDPOINT = "/v5/market/tickers"
TIME_ENDPOINT = "/v5/market/time"
INSTRUMENTS_ENDPOINT = "/v5/market/instruments-info"
CATEGORY = "spot"


def snapshot_from_ticker(exchange: str, ticker: BybitTickerData) -> TickerSnapshot:
    """Build a snapshot from REST or WebSocket ticker fields."""
    return TickerSnapshot(
        exchange=exchange,
        symbol=canonical_symbol(ticker.symbol),
        price=ticker.price,
        bid=ticker.bid,
        ask=ticker.ask,
        volume_24h=ticker.volume,
        change_24h=ticker.change_percent,
    )


class BybitDialect:
    """Bybit uses concatenated symbols (``BTCUSDT``) in the ``spot`` category."""

    exchange = Exchange.BYBIT.value
    health_endpoint = TIME_ENDPOINT

    def __init__(self, max_requests_per_window: int = 120) -> None:
        """Initialize with the request ceiling per window."""
        self.max_requests_per_window = max_requests_per_window

    def normalize_symbol(self, symbol: str) -> str:
        """Strip separators and uppercase: ``BTC-USDT`` -> ``BTCUSDT``."""
        cleaned = require_symbol(symbol)
        return cleaned.replace("/", "").replace("-", "").replace(".", "")

    def canonical_symbol(self, wire_symbol: str) -> str:
        """``BTCUSDT`` -> ``BTC/USDT``."""
        return canonical_symbol(wire_symbol)

    def _unwrap(self, payload: Any) -> dict[str, Any]:
        """Validate the response envelope and return its ``result``."""
        try:
            response = BybitResponse.model_validate(payload)
        except ValidationError as e:
            raise ResponseFormatError("Invalid response envelope", self.exchange) from e
        if not response.is_success:
            raise ResponseFormatError(
                f"API error {response.ret_code}: {response.ret_msg}", self.exchange
            )
        if response.result is None:
            raise ResponseFormatError("Response has no result", self.exchange)
        return response.result

    def ticker_request(self, wire_symbol: str) -> tuple[str, Mapping[str, str]]:
        """Ticker path and query."""
        return TICKER_ENDPOINT, {"category": CATEGORY, "symbol": wire_symbol}

    def parse_ticker(self, payload: Any, wire_symbol: str) -> TickerSnapshot:
        """Parse the first entry of ``result.list``."""
        result = self._unwrap(payload)
        try:
            tickers = BybitTickerList.model_validate(result)
        except ValidationError as e:
            raise ResponseFormatError(
                f"Invalid ticker response for {wire_symbol}", self.exchange
            ) from e
        if not tickers.entries:
            raise ResponseFormatError(
                f"No ticker data in response for {wire_symbol}", self.exchange
            )
        return snapshot_from_ticker(self.exchange, tickers.entries[0])

    def symbols_request(self) -> tuple[str, Mapping[str, str]]:
        """Instrument list path and query."""
        return INSTRUMENTS_ENDPOINT, {"category": CATEGORY}

    def parse_symbols(self, payload: Any) -> list[str]:
        """Parse ``result.list[].symbol`` into canonical symbols."""
        result = self._unwrap(payload)
        try:
            instruments = BybitInstrumentList.model_validate(result)
        except ValidationError as e:
            raise ResponseFormatError("Invalid instruments response", self.exchange) from e

        symbols = []
        for instrument in instruments.entries:
            if instrument.base_coin and instrument.quote_coin:
                symbols.append(f"{instrument.base_coin}/{instrument.quote_coin}".upper())
            else:
                symbols.append(self.canonical_symbol(instrument.symbol))
        return symbols
