"""Bybit v5 spot adapter with ticker streaming."""

from src.marketfeed.adapters.bybit.dialect import BybitDialect
from src.marketfeed.adapters.bybit.stream import BybitStreamDialect

__all__ = ["BybitDialect", "BybitStreamDialect"]
