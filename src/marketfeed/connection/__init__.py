"""Streaming connection management."""

from src.marketfeed.connection.manager import StreamSubscriptionManager

__all__ = ["StreamSubscriptionManager"]
