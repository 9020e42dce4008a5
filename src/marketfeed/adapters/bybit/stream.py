"""
Bybit public WebSocket dialect.

Subscriptions are JSON operations on ``tickers.<SYMBOL>`` topics:

    {"op": "subscribe", "args": ["tickers.BTCUSDT"]}

Acks (``{"success": true, "op": "subscribe", ...}``) and pongs carry no
ticker and are skipped.
"""

import json
import logging

from pydantic import ValidationError

from src.marketfeed.adapters.bybit.data import BybitStreamFrame, BybitTickerData
from src.marketfeed.adapters.bybit.dialect import snapshot_from_ticker
from src.marketfeed.enums import Exchange
from src.marketfeed.errors import ResponseFormatError
from src.marketfeed.model.ticker import TickerSnapshot

logger = logging.getLogger(__name__)

TICKER_TOPIC = "tickers."


class BybitStreamDialect:
    """Frames and parsing for Bybit ticker streaming."""

    exchange = Exchange.BYBIT.value

    def subscribe_message(self, wire_symbol: str) -> str:
        """Subscribe frame for a symbol's ticker topic."""
        return json.dumps({"op": "subscribe", "args": [f"{TICKER_TOPIC}{wire_symbol}"]})

    def unsubscribe_message(self, wire_symbol: str) -> str:
        """Unsubscribe frame for a symbol's ticker topic."""
        return json.dumps({"op": "unsubscribe", "args": [f"{TICKER_TOPIC}{wire_symbol}"]})

    def parse_message(self, raw: str) -> tuple[str, TickerSnapshot] | None:
        """
        Parse a frame.

        Returns:
            ``(wire_symbol, snapshot)`` for ticker pushes, None otherwise

        Raises:
            ResponseFormatError: If the frame is not JSON or a ticker push is
                malformed

        """
        try:
            frame = BybitStreamFrame.model_validate_json(raw)
        except ValidationError as e:
            raise ResponseFormatError(f"Unparseable frame: {e}", self.exchange) from e

        if frame.is_ack:
            if frame.success is False:
                logger.warning(f"Bybit rejected {frame.op}: {frame.ret_msg}")
            else:
                logger.debug(f"Bybit {frame.op} confirmed")
            return None

        if not frame.is_ticker:
            return None

        if frame.data is None:
            raise ResponseFormatError(f"Ticker push without data: {frame.topic}", self.exchange)

        try:
            ticker = BybitTickerData.model_validate(frame.data)
            snapshot = snapshot_from_ticker(self.exchange, ticker)
        except (ValidationError, ArithmeticError) as e:
            raise ResponseFormatError(
                f"Invalid ticker push on {frame.topic}: {e}", self.exchange
            ) from e

        return ticker.symbol, snapshot
