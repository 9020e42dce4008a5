"""Test helpers for market feed tests."""

import asyncio
import json
import time
from collections.abc import Callable
from typing import Any

import httpx
from websockets.exceptions import ConnectionClosedError

from src.marketfeed.adapters.adapter import ExchangeAdapter
from src.marketfeed.adapters.pipeline import RequestPipeline
from src.marketfeed.cache.cache import TickerCache
from src.marketfeed.config import CacheConfig, RateLimitConfig, RetryConfig
from src.marketfeed.protocols.exchange import ExchangeDialect
from src.marketfeed.ratelimit.limiter import RateLimiter
from src.marketfeed.store.memory import InMemoryCounterStore


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float | None = None) -> None:
        """Start at the current whole second unless told otherwise."""
        self.now = float(int(time.time())) if start is None else start

    def __call__(self) -> float:
        """Return the current fake time."""
        return self.now

    def advance(self, seconds: float) -> None:
        """Move the clock forward."""
        self.now += seconds


class RecordingSleep:
    """Sleep replacement that records delays and advances a fake clock."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        """Initialize with an optional clock to advance."""
        self.clock = clock
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        """Record the delay instead of sleeping."""
        self.delays.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)
        await asyncio.sleep(0)


class FakeWebSocket:
    """
    In-memory WebSocket connection.

    Supports the subset of the client connection interface the stream
    manager uses: ``send``, ``close`` and async iteration over frames.
    """

    def __init__(self) -> None:
        """Initialize an open connection with no frames."""
        self.sent: list[str] = []
        self.closed = False
        self._dropped = False
        self._incoming: asyncio.Queue[str | bytes | None] = asyncio.Queue()

    async def send(self, message: str) -> None:
        """Record an outbound frame."""
        self.sent.append(message)

    def push(self, frame: dict[str, Any] | str | bytes) -> None:
        """Deliver an inbound frame."""
        self._incoming.put_nowait(
            frame if isinstance(frame, str | bytes) else json.dumps(frame)
        )

    def drop(self) -> None:
        """Simulate the server dropping the connection."""
        self._dropped = True
        self._incoming.put_nowait(None)

    async def close(self) -> None:
        """Close the connection cleanly."""
        self.closed = True
        self._incoming.put_nowait(None)

    def sent_json(self) -> list[dict[str, Any]]:
        """Decode every sent frame."""
        return [json.loads(message) for message in self.sent]

    def __aiter__(self) -> "FakeWebSocket":
        """Iterate over inbound frames."""
        return self

    async def __anext__(self) -> str | bytes:
        """Return the next inbound frame."""
        frame = await self._incoming.get()
        if frame is None:
            if self._dropped:
                raise ConnectionClosedError(None, None)
            raise StopAsyncIteration
        return frame


class FakeConnector:
    """Connect factory handing out fake connections, optionally failing first."""

    def __init__(self, failures: int = 0) -> None:
        """Fail the first ``failures`` attempts with OSError."""
        self.failures = failures
        self.attempts = 0
        self.connections: list[FakeWebSocket] = []

    async def __call__(self, url: str) -> FakeWebSocket:
        """Open a fake connection."""
        self.attempts += 1
        if self.attempts <= self.failures:
            raise OSError(f"Connection refused: {url}")
        connection = FakeWebSocket()
        self.connections.append(connection)
        return connection

    @property
    def latest(self) -> FakeWebSocket:
        """Most recently opened connection."""
        return self.connections[-1]


async def wait_for(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the loop until the predicate holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0)


def json_response(payload: Any, status_code: int = 200) -> httpx.Response:
    """Build a JSON response."""
    return httpx.Response(status_code, json=payload)


class AdapterStack:
    """Adapter wired to in-memory state and a mock HTTP transport."""

    def __init__(
        self,
        dialect: ExchangeDialect,
        handler: Callable[[httpx.Request], Any],
        base_url: str = "https://api.test",
        max_requests: int | None = None,
        max_gate_wait_seconds: float = 5.0,
        fetch_concurrency: int = 3,
    ) -> None:
        """
        Build the stack.

        Args:
            dialect: Exchange dialect under test
            handler: MockTransport handler (sync or async)
            base_url: Base URL of the fake exchange
            max_requests: Window ceiling (dialect default when None)
            max_gate_wait_seconds: Longest wait at the rate-limit gate
            fetch_concurrency: Batch fetch concurrency

        """
        self.clock = FakeClock()
        self.sleep = RecordingSleep(self.clock)
        self.store = InMemoryCounterStore(clock=self.clock)
        self.limiter = RateLimiter(self.store, clock=self.clock)
        self.cache = TickerCache(self.store, CacheConfig(), clock=self.clock)
        self.client = httpx.AsyncClient(
            base_url=base_url, transport=httpx.MockTransport(handler)
        )
        self.rate_limit_config = RateLimitConfig(
            max_gate_wait_seconds=max_gate_wait_seconds
        )
        self.pipeline = RequestPipeline(
            exchange=dialect.exchange,
            client=self.client,
            limiter=self.limiter,
            max_requests_per_window=max_requests or dialect.max_requests_per_window,
            rate_limit_config=self.rate_limit_config,
            retry_config=RetryConfig(initial_delay=0.0),
            sleep=self.sleep,
        )
        self.adapter = ExchangeAdapter(
            dialect=dialect,
            pipeline=self.pipeline,
            cache=self.cache,
            fetch_concurrency=fetch_concurrency,
            rate_limit_config=self.rate_limit_config,
        )


# Sample payloads

BINANCE_TICKER = {
    "symbol": "BTCUSDT",
    "lastPrice": "50000.10",
    "volume": "1234.5",
    "priceChangePercent": "2.50",
    "bidPrice": "50000.00",
    "askPrice": "50000.20",
}

BYBIT_TICKER = {
    "retCode": 0,
    "retMsg": "OK",
    "result": {
        "category": "spot",
        "list": [
            {
                "symbol": "ETHUSDT",
                "lastPrice": "3000.5",
                "bid1Price": "3000.4",
                "ask1Price": "3000.6",
                "volume24h": "9876.5",
                "price24hPcnt": "0.0125",
            }
        ],
    },
}

OKX_TICKER = {
    "code": "0",
    "msg": "",
    "data": [
        {
            "instId": "BTC-USDT",
            "last": "101",
            "bidPx": "100.9",
            "askPx": "101.1",
            "vol24h": "555",
            "open24h": "100",
        }
    ],
}
