"""
Enums for the market feed.

This module defines the standardized enum values used throughout the
exchange adapters. These enums represent the semantic vocabulary of the
domain and establish consistent naming across exchanges and components.

"""

from __future__ import annotations

import enum

# =============================================================================
# EXCHANGE ENUMS
# =============================================================================


class Exchange(str, enum.Enum):
    """
    Supported exchange identifiers.

    Values are the uppercase codes carried by every ticker snapshot and
    used as the key for rate-limit, backoff and cache entries.
    """

    BINANCE = "BINANCE"
    BYBIT = "BYBIT"
    OKX = "OKX"

    @classmethod
    def from_name(cls, name: str) -> Exchange:
        """
        Resolve an exchange from a case-insensitive name.

        Args:
            name: Exchange name (e.g., "binance", "Bybit", "OKX")

        Returns:
            Matching Exchange enum value

        """
        try:
            return cls(name.strip().upper())
        except ValueError:
            raise ValueError(f"Unsupported exchange: {name}") from None


class TickerStatus(str, enum.Enum):
    """Status of a ticker snapshot."""

    ACTIVE = "ACTIVE"  # Fresh market data
    ERROR = "ERROR"  # Data could not be obtained


# =============================================================================
# RATE LIMITING ENUMS
# =============================================================================


class RateLimitStatus(str, enum.Enum):
    """
    Usage band of an exchange's request budget.

    NORMAL below 70%, WARNING from 70%, CRITICAL from 90%,
    EXCEEDED once the ceiling is reached.
    """

    NORMAL = "NORMAL"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    EXCEEDED = "EXCEEDED"


# =============================================================================
# CACHE ENUMS
# =============================================================================


class CacheNamespace(str, enum.Enum):
    """Independent cache namespaces, each with its own TTL policy."""

    TICKER = "ticker"
    SYMBOLS = "symbols"
    HEALTH = "health"


# =============================================================================
# STREAMING ENUMS
# =============================================================================


class ConnectionState(str, enum.Enum):
    """Lifecycle state of a streaming connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
