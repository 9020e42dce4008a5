"""Exchange market data feed package."""

from src.marketfeed.model import TickerSnapshot
from src.marketfeed.service import MarketDataService, create_market_data_service

__all__ = ["MarketDataService", "TickerSnapshot", "create_market_data_service"]
