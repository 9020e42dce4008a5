"""OKX v5 spot REST dialect."""

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from src.marketfeed.adapters.okx.data import OkxInstrument, OkxResponse, OkxTicker
from src.marketfeed.enums import Exchange
from src.marketfeed.errors import ResponseFormatError
from src.marketfeed.model.ticker import TickerSnapshot
from src.marketfeed.symbols import canonical_symbol, require_symbol, split_symbol

logger = logging.getLogger(__name__)

TICKER_ENDPOINT = "/api/v5/market/ticker"
STATUS_ENDPOINT = "/api/v5/system/status"
INSTRUMENTS_ENDPOINT = "/api/v5/public/instruments"


class OkxDialect:
    """OKX uses dash-separated instrument ids (``BTC-USDT``)."""

    exchange = Exchange.OKX.value
    health_endpoint = STATUS_ENDPOINT

    def __init__(self, max_requests_per_window: int = 600) -> None:
        """Initialize with the request ceiling per window."""
        self.max_requests_per_window = max_requests_per_window

    def normalize_symbol(self, symbol: str) -> str:
        """
        Convert to an instrument id: ``btc/usdt`` -> ``BTC-USDT``.

        Concatenated input (``BTCUSDT``) is split on a known quote asset.
        """
        cleaned = require_symbol(symbol).replace("/", "-").replace(".", "-")
        if "-" not in cleaned:
            split = split_symbol(cleaned)
            if split is not None:
                cleaned = "-".join(split)
        return cleaned

    def canonical_symbol(self, wire_symbol: str) -> str:
        """``BTC-USDT`` -> ``BTC/USDT``."""
        return canonical_symbol(wire_symbol)

    def _unwrap(self, payload: Any) -> list[dict[str, Any]]:
        """Validate the response envelope and return its ``data``."""
        try:
            response = OkxResponse.model_validate(payload)
        except ValidationError as e:
            raise ResponseFormatError("Invalid response envelope", self.exchange) from e
        if not response.is_success:
            raise ResponseFormatError(
                f"API error {response.code}: {response.msg or 'Unknown error'}",
                self.exchange,
            )
        return response.data

    def ticker_request(self, wire_symbol: str) -> tuple[str, Mapping[str, str]]:
        """Ticker path and query."""
        return TICKER_ENDPOINT, {"instId": wire_symbol}

    def parse_ticker(self, payload: Any, wire_symbol: str) -> TickerSnapshot:
        """Parse ``data[0]`` of a ticker response."""
        data = self._unwrap(payload)
        if not data:
            raise ResponseFormatError(
                f"No ticker data in response for {wire_symbol}", self.exchange
            )
        try:
            ticker = OkxTicker.model_validate(data[0])
        except ValidationError as e:
            raise ResponseFormatError(
                f"Invalid ticker response for {wire_symbol}", self.exchange
            ) from e

        logger.debug(
            f"Parsed OKX ticker - Symbol: {wire_symbol}, Price: {ticker.price}, "
            f"Volume: {ticker.volume}, Change: {ticker.change_percent}%"
        )
        return TickerSnapshot(
            exchange=self.exchange,
            symbol=self.canonical_symbol(ticker.inst_id),
            price=ticker.price,
            bid=ticker.bid,
            ask=ticker.ask,
            volume_24h=ticker.volume,
            change_24h=ticker.change_percent,
        )

    def symbols_request(self) -> tuple[str, Mapping[str, str]]:
        """Spot instrument list path and query."""
        return INSTRUMENTS_ENDPOINT, {"instType": "SPOT"}

    def parse_symbols(self, payload: Any) -> list[str]:
        """Parse ``data[].instId`` into canonical symbols."""
        symbols = []
        for entry in self._unwrap(payload):
            try:
                instrument = OkxInstrument.model_validate(entry)
            except ValidationError as e:
                raise ResponseFormatError(
                    "Invalid instruments response", self.exchange
                ) from e
            symbols.append(self.canonical_symbol(instrument.inst_id))
        return symbols
