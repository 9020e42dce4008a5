"""OKX v5 spot adapter."""

from src.marketfeed.adapters.okx.dialect import OkxDialect

__all__ = ["OkxDialect"]
