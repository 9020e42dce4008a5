"""
Shared request pipeline for outbound exchange calls.

Every REST call to an exchange runs through the same stages, in order:

1. Backoff check: fail fast without touching the network while the exchange
   is in backoff.
2. Rate-limit gate: count the request against the exchange's fixed window.
   Over the ceiling, wait the recommended delay when it is short enough and
   re-check once; otherwise reject locally.
3. HTTP GET through ``httpx.AsyncClient``.
4. Retry classification: retry 5xx, 429, timeouts and connection errors with
   exponential delays; never retry other 4xx or malformed payloads.
5. Escalation: after the final failure, put the exchange into backoff
   (longer for upstream rate limits than for other transient failures;
   local denials back off until the window resets).

The gate runs on every attempt, so retries spend request budget like any
other request.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import httpx

from src.marketfeed.config import RateLimitConfig, RetryConfig
from src.marketfeed.errors import (
    ExchangeBackoffError,
    ExchangeConnectionError,
    LocalRateLimitError,
    MarketFeedError,
    ResponseFormatError,
    error_for_status,
    is_rate_limit_error,
    is_retryable,
    is_temporary_error,
)
from src.marketfeed.ratelimit.limiter import RateLimiter, exchange_key

logger = logging.getLogger(__name__)


class RequestPipeline:
    """Backoff, rate limiting, retries and escalation for one exchange."""

    def __init__(
        self,
        exchange: str,
        client: httpx.AsyncClient,
        limiter: RateLimiter,
        max_requests_per_window: int,
        rate_limit_config: RateLimitConfig | None = None,
        retry_config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            exchange: Uppercase exchange code
            client: HTTP client with the exchange base URL configured
            limiter: Shared rate limiter
            max_requests_per_window: Request ceiling per fixed window
            rate_limit_config: Window, gate wait and backoff durations
            retry_config: Attempts, delays and timeouts
            sleep: Awaitable sleep (injectable for tests)

        """
        self.exchange = exchange.upper()
        self.client = client
        self.limiter = limiter
        self.max_requests_per_window = max_requests_per_window
        self.rate_limit_config = rate_limit_config or RateLimitConfig()
        self.retry_config = retry_config or RetryConfig()
        self._sleep = sleep
        self._key = exchange_key(self.exchange)

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    async def check_backoff(self) -> None:
        """
        Reject the request while the exchange is in backoff.

        Raises:
            ExchangeBackoffError: If a backoff deadline is active

        """
        remaining = await self.limiter.get_backoff_time(self.exchange)
        if remaining > 0:
            logger.warning(
                f"Exchange {self.exchange} is in backoff for {remaining:.0f} more seconds"
            )
            raise ExchangeBackoffError(self.exchange, remaining)

    async def acquire_permit(self) -> None:
        """
        Count one request against the rate-limit window.

        Raises:
            LocalRateLimitError: If the window is exhausted and the wait for
                the next one is longer than the configured maximum

        """
        window = self.rate_limit_config.window_seconds
        ceiling = self.max_requests_per_window

        if await self.limiter.is_request_allowed(self._key, ceiling, window):
            return

        delay_ms = await self.limiter.get_recommended_delay(self._key, ceiling, window)
        delay = delay_ms / 1000
        if delay > self.rate_limit_config.max_gate_wait_seconds:
            raise LocalRateLimitError(
                f"Local rate limit exhausted, next window in {delay:.1f}s",
                self.exchange,
                retry_after_seconds=delay,
            )

        logger.warning(f"Rate limit exceeded for {self.exchange}, waiting {delay_ms} ms")
        await self._sleep(delay)

        if not await self.limiter.is_request_allowed(self._key, ceiling, window):
            retry_ms = await self.limiter.get_recommended_delay(self._key, ceiling, window)
            raise LocalRateLimitError(
                "Local rate limit exhausted after waiting",
                self.exchange,
                retry_after_seconds=retry_ms / 1000,
            )

    async def _get_json(
        self, path: str, params: Mapping[str, str] | None, timeout: float
    ) -> Any:
        """Perform one GET and decode the JSON body."""
        try:
            response = await self.client.get(path, params=params, timeout=timeout)
        except httpx.TimeoutException as e:
            raise ExchangeConnectionError(
                f"Request to {path} timed out", self.exchange
            ) from e
        except httpx.TransportError as e:
            raise ExchangeConnectionError(
                f"Connection error on {path}: {e}", self.exchange
            ) from e

        if response.is_error:
            raise error_for_status(response.status_code, self.exchange, response.text)

        try:
            return response.json()
        except ValueError as e:
            raise ResponseFormatError(
                f"Invalid JSON from {path}: {e}", self.exchange
            ) from e

    async def _escalate(self, error: MarketFeedError) -> None:
        """Put the exchange into backoff after a final failure."""
        if isinstance(error, LocalRateLimitError):
            # Local denials back off only until the window resets
            seconds = min(
                error.retry_after_seconds,
                self.rate_limit_config.rate_limit_backoff_seconds,
            )
            if seconds > 0:
                await self.limiter.set_backoff(self.exchange, seconds)
                logger.warning(
                    f"Set backoff for {self.exchange} until the rate-limit window resets"
                )
        elif is_rate_limit_error(error):
            await self.limiter.set_backoff(
                self.exchange, self.rate_limit_config.rate_limit_backoff_seconds
            )
            logger.warning(f"Set backoff for {self.exchange} due to rate limit error")
        elif is_temporary_error(error):
            await self.limiter.set_backoff(
                self.exchange, self.rate_limit_config.temporary_backoff_seconds
            )
            logger.warning(f"Set backoff for {self.exchange} due to temporary error")

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def request_json(
        self,
        path: str,
        params: Mapping[str, str] | None = None,
        operation: str = "request",
    ) -> Any:
        """
        Run a GET through every pipeline stage.

        Args:
            path: Path relative to the exchange base URL
            params: Query parameters
            operation: Name used in log messages

        Returns:
            Decoded JSON body

        Raises:
            MarketFeedError: When the request is rejected locally or fails
                after all attempts

        """
        await self.check_backoff()

        attempts = self.retry_config.max_attempts
        delay = self.retry_config.initial_delay
        attempt = 1
        while True:
            try:
                await self.acquire_permit()
                return await self._get_json(
                    path, params, self.retry_config.request_timeout
                )
            except MarketFeedError as e:
                if not is_retryable(e) or attempt >= attempts:
                    logger.error(f"Failed {operation} for {self.exchange}: {e}")
                    await self._escalate(e)
                    raise
                logger.warning(
                    f"{operation} for {self.exchange} failed ({e}), "
                    f"retrying in {delay:.1f}s (attempt {attempt}/{attempts})"
                )
            await self._sleep(delay)
            delay *= self.retry_config.backoff_factor
            attempt += 1

    async def probe(self, path: str) -> bool:
        """
        Check reachability of a lightweight endpoint.

        Probes are not metered, never escalate to backoff and use the shorter
        health timeout. A non-empty successful body means healthy.

        Returns:
            True when the endpoint answered with a non-empty success body

        """
        attempts = self.retry_config.max_attempts
        delay = self.retry_config.initial_delay
        for attempt in range(1, attempts + 1):
            try:
                body = await self._get_json(path, None, self.retry_config.health_timeout)
                return body is not None and body != ""
            except MarketFeedError as e:
                if not is_retryable(e) or attempt == attempts:
                    logger.error(f"Failed health check for {self.exchange}: {e}")
                    return False
                await self._sleep(delay)
                delay *= self.retry_config.backoff_factor
        return False
