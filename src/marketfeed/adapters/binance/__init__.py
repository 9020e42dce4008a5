"""Binance spot adapter."""

from src.marketfeed.adapters.binance.dialect import BinanceDialect

__all__ = ["BinanceDialect"]
