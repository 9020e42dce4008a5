"""
Ticker snapshot domain model.

This model represents ticker data in the domain layer, independent of any
specific exchange implementation. Every adapter, REST or streaming, produces
exactly this shape.

Errored fetches are still valid snapshots: they carry a zero price and a
non-empty ``error_detail`` so callers can show "data temporarily
unavailable" instead of handling exceptions.
"""

from datetime import UTC, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.marketfeed.enums import TickerStatus


class TickerSnapshot(BaseModel):
    """
    Canonical point-in-time ticker for one (exchange, symbol) pair.

    The model is frozen: a snapshot is never mutated, only superseded by the
    next one for the same key.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    exchange: str = Field(..., min_length=1, max_length=20)
    symbol: str
    price: Decimal = Field(default=Decimal("0"), ge=0)
    bid: Decimal = Field(default=Decimal("0"), ge=0)
    ask: Decimal = Field(default=Decimal("0"), ge=0)
    volume_24h: Decimal = Field(default=Decimal("0"), alias="volume24h")
    change_24h: Decimal = Field(default=Decimal("0"), alias="change24h")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    status: TickerStatus = TickerStatus.ACTIVE
    error_detail: str | None = Field(default=None, alias="errorDetail")

    @model_validator(mode="after")
    def check_status_consistency(self) -> "TickerSnapshot":
        """Ensure error details appear exactly on ERROR snapshots."""
        if self.status is TickerStatus.ERROR:
            if not self.error_detail:
                raise ValueError("ERROR snapshots require an error_detail")
            if self.price != 0:
                raise ValueError("ERROR snapshots must carry a zero price")
        elif self.error_detail is not None:
            raise ValueError("error_detail is only allowed on ERROR snapshots")
        return self

    @classmethod
    def error(cls, exchange: str, symbol: str, detail: str) -> "TickerSnapshot":
        """
        Create an ERROR snapshot.

        Args:
            exchange: Exchange code
            symbol: Symbol the caller asked for
            detail: Description of what went wrong

        Returns:
            Snapshot marked as errored with a zero price

        """
        return cls(
            exchange=exchange,
            symbol=symbol,
            status=TickerStatus.ERROR,
            error_detail=detail or "Unknown error",
        )

    @property
    def is_error(self) -> bool:
        """Check if this snapshot represents a failed fetch."""
        return self.status is TickerStatus.ERROR

    @property
    def spread(self) -> Decimal | None:
        """Calculate bid-ask spread."""
        if self.is_error or not self.bid or not self.ask:
            return None
        return self.ask - self.bid

    def is_stale(self, max_age_seconds: float = 300) -> bool:
        """Check if ticker data is stale based on timestamp."""
        age = datetime.now(UTC) - self.timestamp
        return age.total_seconds() > max_age_seconds

    def format_summary(self) -> str:
        """Format a human-readable summary."""
        if self.is_error:
            return f"{self.symbol} @ {self.exchange} | ERROR: {self.error_detail}"

        parts = [
            f"{self.symbol} @ {self.exchange}",
            f"Price: {self.price}",
            f"Bid/Ask: {self.bid}/{self.ask}",
            f"24h: {self.change_24h}%",
        ]
        return " | ".join(parts)
