"""
OKX v5 API Pydantic Models.

Every OKX REST response is ``{"code": "0", "msg": "", "data": [...]}``; a
non-zero ``code`` is an API-level error even on HTTP 200.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _to_decimal(value: str | float | None) -> Decimal | None:
    """Convert string or float to Decimal, handling None."""
    if value is None or value == "":
        return None
    return Decimal(str(value))


class OkxTicker(BaseModel):
    """One entry of ``GET /api/v5/market/ticker`` data."""

    inst_id: str = Field(alias="instId")
    last_raw: str | float = Field(alias="last")
    bid_px_raw: str | float | None = Field(alias="bidPx", default=None)
    ask_px_raw: str | float | None = Field(alias="askPx", default=None)
    vol_24h_raw: str | float | None = Field(alias="vol24h", default=None)
    open_24h_raw: str | float | None = Field(alias="open24h", default=None)

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @property
    def price(self) -> Decimal:
        """Get last traded price."""
        return _to_decimal(self.last_raw) or Decimal("0")

    @property
    def bid(self) -> Decimal:
        """Get best bid, falling back to the last price."""
        return _to_decimal(self.bid_px_raw) or self.price

    @property
    def ask(self) -> Decimal:
        """Get best ask, falling back to the last price."""
        return _to_decimal(self.ask_px_raw) or self.price

    @property
    def volume(self) -> Decimal:
        """Get 24-hour base volume."""
        return _to_decimal(self.vol_24h_raw) or Decimal("0")

    @property
    def change_percent(self) -> Decimal:
        """
        Get 24-hour change in percent, derived from the 24h open.

        The ratio is rounded half-up to 4 decimal places before scaling.
        """
        open_24h = _to_decimal(self.open_24h_raw)
        if not open_24h:
            return Decimal("0")
        ratio = ((self.price - open_24h) / open_24h).quantize(
            Decimal("0.0001"), rounding=ROUND_HALF_UP
        )
        return ratio * 100


class OkxInstrument(BaseModel):
    """One entry of ``GET /api/v5/public/instruments`` data."""

    inst_id: str = Field(alias="instId")
    base_ccy: str | None = Field(alias="baseCcy", default=None)
    quote_ccy: str | None = Field(alias="quoteCcy", default=None)
    state: str | None = None

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class OkxResponse(BaseModel):
    """Envelope shared by every OKX v5 REST response."""

    code: str
    msg: str = ""
    data: list[dict[str, Any]] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    @property
    def is_success(self) -> bool:
        """Check the API-level status code."""
        return self.code == "0"
