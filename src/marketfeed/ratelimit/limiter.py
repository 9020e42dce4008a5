"""
Fixed-window rate limiter and exchange backoff markers.

Counters live in the shared counter store under ``rate_limit:<key>`` and
expire one window after their first increment. Exchange-wide backoff is kept
separately under ``backoff:<exchange>`` as an epoch deadline whose own TTL
matches the backoff duration.

The limiter fails closed: when the store cannot be reached during an
operation, requests are denied rather than allowed through unmetered.
"""

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime

from src.marketfeed.errors import StoreUnavailableError
from src.marketfeed.model.rate_limit import RateLimitState, RateLimitUsage
from src.marketfeed.protocols.store import CounterStore

logger = logging.getLogger(__name__)

RATE_LIMIT_PREFIX = "rate_limit:"
BACKOFF_PREFIX = "backoff:"

# Added on top of the reset time so the next request lands in a fresh window
RESET_MARGIN_MS = 100


def exchange_key(exchange: str) -> str:
    """Rate-limit key for an exchange."""
    return f"exchange:{exchange.upper()}"


class RateLimiter:
    """
    Distributed fixed-window rate limiter.

    Every public method takes the limiter key (``exchange:<NAME>`` for
    exchange budgets) rather than the exchange itself, so the same limiter
    can meter any caller-defined budget.
    """

    def __init__(
        self,
        store: CounterStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the rate limiter.

        Args:
            store: Shared counter store
            clock: Wall-clock source in epoch seconds (injectable for tests)

        """
        self.store = store
        self._clock = clock

    @property
    def degraded(self) -> bool:
        """Whether the underlying store runs on per-process fallback."""
        return bool(getattr(self.store, "degraded", False))

    # -------------------------------------------------------------------------
    # Fixed window
    # -------------------------------------------------------------------------

    async def is_request_allowed(
        self, key: str, max_requests: int, window_seconds: int
    ) -> bool:
        """
        Count a request and check it against the window ceiling.

        The increment happens whether or not the request is allowed, so a
        denied caller still consumes budget until the window resets.

        Args:
            key: Limiter key
            max_requests: Ceiling for the window
            window_seconds: Window length

        Returns:
            True when the request fits in the current window

        """
        try:
            count = await self.store.incr_with_ttl(
                RATE_LIMIT_PREFIX + key, window_seconds
            )
        except StoreUnavailableError as e:
            logger.error(f"Rate limit check failed for {key}, denying request: {e}")
            return False

        allowed = count <= max_requests
        if allowed:
            logger.debug(f"Rate limit check for {key}: {count}/{max_requests}")
        else:
            logger.warning(
                f"Rate limit exceeded for key: {key}. "
                f"Current count: {count}, max: {max_requests}"
            )
        return allowed

    async def get_current_count(self, key: str) -> int:
        """Get the number of requests counted in the active window."""
        try:
            value = await self.store.get(RATE_LIMIT_PREFIX + key)
        except StoreUnavailableError as e:
            logger.error(f"Failed to read rate limit count for {key}: {e}")
            return 0
        return int(value) if value else 0

    async def get_time_until_reset(self, key: str) -> float:
        """Get seconds until the active window resets, 0 when none is active."""
        try:
            remaining = await self.store.ttl(RATE_LIMIT_PREFIX + key)
        except StoreUnavailableError as e:
            logger.error(f"Failed to read rate limit TTL for {key}: {e}")
            return 0.0
        return remaining or 0.0

    async def get_recommended_delay(
        self, key: str, max_requests: int, window_seconds: int
    ) -> int:
        """
        Recommend how long to wait before the next request.

        Returns:
            Delay in milliseconds: 0 below the ceiling, time to reset plus a
            margin when a window is active, otherwise an even spread of the
            window over its budget

        """
        current = await self.get_current_count(key)
        if current < max_requests:
            return 0

        until_reset = await self.get_time_until_reset(key)
        if until_reset > 0:
            return int(until_reset * 1000) + RESET_MARGIN_MS

        return window_seconds * 1000 // max_requests

    async def get_remaining_requests(self, key: str, max_requests: int) -> int:
        """Get the requests left in the active window."""
        return max(0, max_requests - await self.get_current_count(key))

    async def get_reset_time(self, key: str) -> datetime | None:
        """Get when the active window resets, or None when no window is active."""
        until_reset = await self.get_time_until_reset(key)
        if until_reset <= 0:
            return None
        return datetime.fromtimestamp(self._clock() + until_reset, UTC)

    async def reset_rate_limit(self, key: str) -> None:
        """Clear the counter for a key."""
        try:
            await self.store.delete(RATE_LIMIT_PREFIX + key)
        except StoreUnavailableError as e:
            logger.error(f"Failed to reset rate limit for {key}: {e}")
            return
        logger.info(f"Rate limit reset for key: {key}")

    # -------------------------------------------------------------------------
    # Backoff
    # -------------------------------------------------------------------------

    async def set_backoff(self, exchange: str, seconds: float) -> None:
        """
        Put an exchange into backoff.

        Args:
            exchange: Exchange code
            seconds: Backoff duration

        """
        deadline = self._clock() + seconds
        try:
            await self.store.set(
                BACKOFF_PREFIX + exchange.upper(), repr(deadline), ttl_seconds=seconds
            )
        except StoreUnavailableError as e:
            logger.error(f"Failed to set backoff for {exchange}: {e}")
            return
        logger.warning(f"Set backoff for exchange: {exchange} for {seconds} seconds")

    async def get_backoff_time(self, exchange: str) -> float:
        """Get seconds of backoff remaining, 0 when not in backoff."""
        try:
            value = await self.store.get(BACKOFF_PREFIX + exchange.upper())
        except StoreUnavailableError as e:
            logger.error(f"Failed to read backoff for {exchange}: {e}")
            return 0.0
        if not value:
            return 0.0
        return max(0.0, float(value) - self._clock())

    async def is_in_backoff(self, exchange: str) -> bool:
        """Check if an exchange is in backoff."""
        return await self.get_backoff_time(exchange) > 0

    async def clear_backoff(self, exchange: str) -> None:
        """Lift an exchange's backoff early."""
        try:
            await self.store.delete(BACKOFF_PREFIX + exchange.upper())
        except StoreUnavailableError as e:
            logger.error(f"Failed to clear backoff for {exchange}: {e}")

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    async def state(
        self, exchange: str, max_requests: int, window_seconds: int
    ) -> RateLimitState:
        """Build the per-exchange counter and backoff view."""
        key = exchange_key(exchange)
        backoff_remaining = await self.get_backoff_time(exchange)
        backoff_until = (
            datetime.fromtimestamp(self._clock() + backoff_remaining, UTC)
            if backoff_remaining > 0
            else None
        )
        return RateLimitState(
            exchange=exchange.upper(),
            current_requests=await self.get_current_count(key),
            max_requests_per_window=max_requests,
            window_duration_seconds=window_seconds,
            resets_at=await self.get_reset_time(key),
            backoff_until=backoff_until,
        )

    async def usage(
        self, exchange: str, max_requests: int, window_seconds: int
    ) -> RateLimitUsage:
        """Project the per-exchange state into a usage summary."""
        state = await self.state(exchange, max_requests, window_seconds)
        return state.usage()
