"""
Error taxonomy for outbound exchange calls.

These exceptions are raised inside the request pipeline and the streaming
manager only. Adapters convert every one of them into a typed result
(an ERROR snapshot, an empty list, ``False``) before it reaches a caller.
"""

import httpx


class MarketFeedError(Exception):
    """Base class for all market feed errors."""

    def __init__(self, message: str, exchange: str | None = None) -> None:
        """
        Initialize the error.

        Args:
            message: Human-readable description
            exchange: Exchange code the error relates to, if any

        """
        super().__init__(message)
        self.message = message
        self.exchange = exchange

    def __str__(self) -> str:
        """Prefix the message with the exchange code when known."""
        if self.exchange:
            return f"[{self.exchange}] {self.message}"
        return self.message


class ExchangeHTTPError(MarketFeedError):
    """Upstream answered with a non-success HTTP status."""

    def __init__(self, message: str, exchange: str | None, status_code: int) -> None:
        """Initialize with the HTTP status code."""
        super().__init__(message, exchange)
        self.status_code = status_code


class TransientExchangeError(ExchangeHTTPError):
    """Upstream 5xx: worth retrying."""


class ExchangeRateLimitError(ExchangeHTTPError):
    """Upstream answered 429 Too Many Requests."""


class ExchangeClientError(ExchangeHTTPError):
    """Permanent 4xx client error: never retried."""


class ExchangeConnectionError(MarketFeedError):
    """Connection failure or timeout before a response was received."""


class ExchangeBackoffError(MarketFeedError):
    """The exchange is in backoff; the request was rejected locally."""

    def __init__(self, exchange: str, remaining_seconds: float) -> None:
        """Initialize with the remaining backoff time."""
        super().__init__(
            f"Exchange in backoff state for {remaining_seconds:.1f} more seconds",
            exchange,
        )
        self.remaining_seconds = remaining_seconds


class LocalRateLimitError(MarketFeedError):
    """The local request budget is exhausted; the request was not sent."""

    def __init__(self, message: str, exchange: str, retry_after_seconds: float) -> None:
        """Initialize with the time until the rate-limit window resets."""
        super().__init__(message, exchange)
        self.retry_after_seconds = retry_after_seconds


class ResponseFormatError(MarketFeedError):
    """Upstream payload did not have the expected shape."""


class StoreUnavailableError(MarketFeedError):
    """The shared counter store could not be reached."""


class StreamConnectionError(MarketFeedError):
    """A streaming connection could not be established."""


def error_for_status(status_code: int, exchange: str, body: str = "") -> ExchangeHTTPError:
    """
    Build the classified exception for an HTTP error status.

    Args:
        status_code: HTTP status returned by the exchange
        exchange: Exchange code
        body: Response body excerpt for diagnostics

    Returns:
        The matching ExchangeHTTPError subclass instance

    """
    detail = f"HTTP {status_code}"
    if body:
        detail = f"{detail} - {body[:200]}"

    if status_code == 429:
        return ExchangeRateLimitError(detail, exchange, status_code)
    if status_code >= 500:
        return TransientExchangeError(detail, exchange, status_code)
    return ExchangeClientError(detail, exchange, status_code)


def is_retryable(error: BaseException) -> bool:
    """Retry on server errors, rate limits and network issues, never other 4xx."""
    if isinstance(error, ExchangeHTTPError):
        return error.status_code >= 500 or error.status_code == 429
    return isinstance(
        error, ExchangeConnectionError | httpx.TimeoutException | httpx.TransportError
    )


def is_rate_limit_error(error: BaseException) -> bool:
    """Check whether the error signals an upstream rate limit."""
    return isinstance(error, ExchangeHTTPError) and error.status_code == 429


def is_temporary_error(error: BaseException) -> bool:
    """Check whether the error indicates a temporary upstream issue."""
    if isinstance(error, ExchangeHTTPError):
        return error.status_code >= 500 or error.status_code == 429
    return isinstance(
        error, ExchangeConnectionError | httpx.TimeoutException | httpx.TransportError
    )
