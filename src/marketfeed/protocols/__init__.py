"""Market feed protocols."""

from src.marketfeed.protocols.exchange import (
    ExchangeAdapterProtocol,
    ExchangeDialect,
    StreamDialect,
    TickerCallback,
)
from src.marketfeed.protocols.store import CounterStore

__all__ = [
    "CounterStore",
    "ExchangeAdapterProtocol",
    "ExchangeDialect",
    "StreamDialect",
    "TickerCallback",
]
