"""
Bybit v5 API Pydantic Models.

REST responses wrap their payload in ``{"retCode", "retMsg", "result"}``;
WebSocket frames are either operation acks (``{"success": ..., "op": ...}``)
or topic pushes (``{"topic": "tickers.BTCUSDT", "data": {...}}``).
"""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _to_decimal(value: str | float | None) -> Decimal | None:
    """Convert string or float to Decimal, handling None."""
    if value is None or value == "":
        return None
    return Decimal(str(value))


class BybitTickerData(BaseModel):
    """
    Ticker fields shared by the REST list entries and WebSocket pushes.

    Spot WebSocket pushes omit best bid/ask; both fall back to the last price.
    """

    symbol: str
    last_price_raw: str | float = Field(alias="lastPrice")
    bid1_price_raw: str | float | None = Field(alias="bid1Price", default=None)
    ask1_price_raw: str | float | None = Field(alias="ask1Price", default=None)
    volume_24h_raw: str | float | None = Field(alias="volume24h", default=None)
    price_24h_pcnt_raw: str | float | None = Field(alias="price24hPcnt", default=None)

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @property
    def price(self) -> Decimal:
        """Get last traded price."""
        return _to_decimal(self.last_price_raw) or Decimal("0")

    @property
    def bid(self) -> Decimal:
        """Get best bid, falling back to the last price."""
        return _to_decimal(self.bid1_price_raw) or self.price

    @property
    def ask(self) -> Decimal:
        """Get best ask, falling back to the last price."""
        return _to_decimal(self.ask1_price_raw) or self.price

    @property
    def volume(self) -> Decimal:
        """Get 24-hour base volume."""
        return _to_decimal(self.volume_24h_raw) or Decimal("0")

    @property
    def change_percent(self) -> Decimal:
        """Get 24-hour change in percent (Bybit reports a fraction)."""
        fraction = _to_decimal(self.price_24h_pcnt_raw) or Decimal("0")
        return fraction * 100


class BybitTickerList(BaseModel):
    """``result`` of ``GET /v5/market/tickers``."""

    category: str | None = None
    entries: list[BybitTickerData] = Field(alias="list")

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class BybitInstrument(BaseModel):
    """One entry of ``instruments-info`` results."""

    symbol: str
    base_coin: str | None = Field(alias="baseCoin", default=None)
    quote_coin: str | None = Field(alias="quoteCoin", default=None)
    status: str | None = None

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class BybitInstrumentList(BaseModel):
    """``result`` of ``GET /v5/market/instruments-info``."""

    entries: list[BybitInstrument] = Field(alias="list")

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class BybitResponse(BaseModel):
    """Envelope shared by every Bybit v5 REST response."""

    ret_code: int = Field(alias="retCode", default=0)
    ret_msg: str = Field(alias="retMsg", default="")
    result: dict[str, Any] | None = None

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @property
    def is_success(self) -> bool:
        """Check the API-level status code."""
        return self.ret_code == 0


class BybitStreamFrame(BaseModel):
    """Any frame received on the public WebSocket."""

    success: bool | None = None
    op: str | None = None
    ret_msg: str | None = None
    topic: str | None = None
    frame_type: str | None = Field(alias="type", default=None)
    data: dict[str, Any] | None = None

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @property
    def is_ack(self) -> bool:
        """Operation acknowledgement (subscribe, unsubscribe, pong)."""
        return self.op is not None and self.topic is None

    @property
    def is_ticker(self) -> bool:
        """Ticker topic push."""
        return self.topic is not None and self.topic.startswith("tickers.")
