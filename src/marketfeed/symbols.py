"""
Symbol format helpers shared by the exchange dialects.

The canonical form is ``BASE/QUOTE`` in uppercase (``BTC/USDT``). Exchanges
use either a concatenated form (``BTCUSDT``) or a dash-separated form
(``BTC-USDT``); callers may pass any of these.
"""

import re

# Longest first so "FDUSD" wins over "USD"
KNOWN_QUOTES: tuple[str, ...] = tuple(
    sorted(
        (
            "USDT",
            "USDC",
            "FDUSD",
            "BUSD",
            "TUSD",
            "DAI",
            "USD",
            "EUR",
            "GBP",
            "TRY",
            "BRL",
            "BTC",
            "ETH",
            "BNB",
        ),
        key=len,
        reverse=True,
    )
)

_SEPARATORS = re.compile(r"[/\-._]")

MAX_SYMBOL_LENGTH = 40


def split_symbol(symbol: str) -> tuple[str, str] | None:
    """
    Split a symbol into base and quote assets.

    Args:
        symbol: Symbol in any supported form

    Returns:
        ``(base, quote)`` or None when no split can be determined

    """
    cleaned = symbol.strip().upper()
    parts = [p for p in _SEPARATORS.split(cleaned) if p]
    if len(parts) == 2:
        return parts[0], parts[1]
    if len(parts) != 1:
        return None

    for quote in KNOWN_QUOTES:
        if cleaned.endswith(quote) and len(cleaned) > len(quote):
            return cleaned[: -len(quote)], quote
    return None


def canonical_symbol(symbol: str) -> str:
    """
    Convert a symbol in any supported form to ``BASE/QUOTE``.

    Symbols whose quote asset cannot be determined are returned uppercased
    and otherwise unchanged.
    """
    split = split_symbol(symbol)
    if split is None:
        return symbol.strip().upper()
    base, quote = split
    return f"{base}/{quote}"


def require_symbol(symbol: str | None) -> str:
    """
    Validate that a symbol is non-empty and of a plausible length.

    Raises:
        ValueError: If the symbol is missing, blank or too long

    """
    if symbol is None or not symbol.strip():
        raise ValueError("Symbol cannot be empty")
    cleaned = symbol.strip().upper()
    if len(cleaned) > MAX_SYMBOL_LENGTH:
        raise ValueError(f"Symbol longer than {MAX_SYMBOL_LENGTH} characters")
    return cleaned
