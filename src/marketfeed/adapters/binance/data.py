"""
Binance REST API Pydantic Models.

Raw fields keep Binance's wire values as-is (``_raw`` suffix); properties
expose the decimal values used to build ticker snapshots.
"""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


def _to_decimal(value: str | float | None) -> Decimal | None:
    """Convert string or float to Decimal, handling None."""
    if value is None or value == "":
        return None
    return Decimal(str(value))


class BinanceTicker24h(BaseModel):
    """Response of ``GET /api/v3/ticker/24hr?symbol=...``."""

    symbol: str
    last_price_raw: str | float = Field(alias="lastPrice")
    volume_raw: str | float | None = Field(alias="volume", default=None)
    price_change_percent_raw: str | float | None = Field(
        alias="priceChangePercent", default=None
    )
    bid_price_raw: str | float | None = Field(alias="bidPrice", default=None)
    ask_price_raw: str | float | None = Field(alias="askPrice", default=None)

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @property
    def price(self) -> Decimal:
        """Get last traded price."""
        return _to_decimal(self.last_price_raw) or Decimal("0")

    @property
    def bid(self) -> Decimal:
        """Get best bid, falling back to the last price."""
        return _to_decimal(self.bid_price_raw) or self.price

    @property
    def ask(self) -> Decimal:
        """Get best ask, falling back to the last price."""
        return _to_decimal(self.ask_price_raw) or self.price

    @property
    def volume(self) -> Decimal:
        """Get 24-hour base volume."""
        return _to_decimal(self.volume_raw) or Decimal("0")

    @property
    def change_percent(self) -> Decimal:
        """Get 24-hour price change in percent."""
        return _to_decimal(self.price_change_percent_raw) or Decimal("0")


class BinanceSymbolInfo(BaseModel):
    """One entry of ``exchangeInfo.symbols``."""

    symbol: str
    status: str | None = None
    base_asset: str | None = Field(alias="baseAsset", default=None)
    quote_asset: str | None = Field(alias="quoteAsset", default=None)

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class BinanceExchangeInfo(BaseModel):
    """Response of ``GET /api/v3/exchangeInfo``."""

    symbols: list[BinanceSymbolInfo]

    model_config = ConfigDict(extra="ignore")
