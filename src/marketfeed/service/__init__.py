"""Exchange-agnostic market data service."""

from src.marketfeed.service.market_data import (
    MarketDataService,
    create_adapter,
    create_market_data_service,
)

__all__ = ["MarketDataService", "create_adapter", "create_market_data_service"]
