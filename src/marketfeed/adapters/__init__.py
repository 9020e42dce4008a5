"""
============================

Market Data Exchange Adapters.

============================

This package contains the shared adapter machinery and the per-exchange
dialects. Dialects translate exchange-specific endpoints, symbol formats and
payloads into domain models; the request pipeline and adapter facade are
shared by every exchange.

"""

from src.marketfeed.adapters.adapter import ExchangeAdapter
from src.marketfeed.adapters.pipeline import RequestPipeline

__all__ = ["ExchangeAdapter", "RequestPipeline"]
