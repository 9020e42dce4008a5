"""
Streaming subscription manager.

Owns one WebSocket connection per exchange and the map of live ticker
subscriptions on it. The connection lifecycle is an explicit state machine:

    DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED
                    CONNECTING -> DISCONNECTED (attempt failed)

Outbound subscribe/unsubscribe frames go through a single command queue
drained by a writer task; inbound frames are read by a reader task and
dispatched to the subscriber registered for the frame's symbol. Commands
queued before the socket opens are sent once it does.

When the connection drops while subscriptions are live, the manager
reconnects with bounded exponential backoff and re-issues a subscribe frame
for every live subscription.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from src.marketfeed.config import StreamConfig
from src.marketfeed.enums import ConnectionState
from src.marketfeed.errors import (
    MarketFeedError,
    ResponseFormatError,
    StreamConnectionError,
)
from src.marketfeed.model.ticker import TickerSnapshot
from src.marketfeed.protocols.exchange import StreamDialect, TickerCallback

logger = logging.getLogger(__name__)

SnapshotSink = Callable[[TickerSnapshot, str], Awaitable[None]]
ConnectFactory = Callable[[str], Awaitable[Any]]

_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset(
        {ConnectionState.CONNECTED, ConnectionState.DISCONNECTED}
    ),
    ConnectionState.CONNECTED: frozenset({ConnectionState.DISCONNECTED}),
}


class StreamSubscriptionManager:
    """
    Subscription registry and connection state machine for one exchange.

    At most one callback is registered per wire symbol; subscribing again
    replaces it.
    """

    def __init__(
        self,
        dialect: StreamDialect,
        url: str,
        stream_config: StreamConfig | None = None,
        connect: ConnectFactory | None = None,
        sink: SnapshotSink | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the manager.

        Args:
            dialect: Frame format and parsing for the exchange
            url: WebSocket endpoint
            stream_config: Connect attempts and reconnect backoff
            connect: Coroutine factory opening a connection to a URL
                (defaults to ``websockets.connect``)
            sink: Receives every dispatched snapshot with its wire symbol,
                before the subscriber callback runs
            sleep: Awaitable sleep (injectable for tests)

        """
        self.dialect = dialect
        self.url = url
        self.stream_config = stream_config or StreamConfig()
        self._connect = connect or self._default_connect
        self._sink = sink
        self._sleep = sleep

        self._state = ConnectionState.DISCONNECTED
        self._subscribers: dict[str, tuple[str, TickerCallback]] = {}
        self._commands: asyncio.Queue[str] = asyncio.Queue()
        self._connection: Any = None
        self._reader_task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._connect_lock = asyncio.Lock()
        self._closing = False
        self._disconnects = 0

    async def _default_connect(self, url: str) -> Any:
        return await websockets.connect(url, open_timeout=self.stream_config.open_timeout)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Whether the socket is open."""
        return self._state is ConnectionState.CONNECTED

    @property
    def subscribed_symbols(self) -> list[str]:
        """Canonical symbols with a live subscription."""
        return [canonical for canonical, _ in self._subscribers.values()]

    @property
    def subscription_count(self) -> int:
        """Number of live subscriptions."""
        return len(self._subscribers)

    def _transition(self, new_state: ConnectionState) -> None:
        """Move to a new state, rejecting transitions outside the table."""
        if new_state not in _TRANSITIONS[self._state]:
            raise RuntimeError(
                f"Invalid stream state transition {self._state.value} -> {new_state.value}"
            )
        logger.debug(
            f"{self.dialect.exchange} stream: {self._state.value} -> {new_state.value}"
        )
        self._state = new_state

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    async def subscribe(
        self, wire_symbol: str, callback: TickerCallback, canonical: str | None = None
    ) -> bool:
        """
        Register a callback and subscribe to a symbol's ticker.

        The callback is registered before the connection is ensured, so no
        frame that arrives right after the subscribe frame is missed.

        Returns:
            True when the subscribe frame was queued on an open connection

        """
        self._subscribers[wire_symbol] = (canonical or wire_symbol, callback)

        try:
            await self.ensure_connected()
        except StreamConnectionError as e:
            logger.error(f"Failed to subscribe to ticker for {wire_symbol}: {e}")
            self._subscribers.pop(wire_symbol, None)
            return False

        await self._commands.put(self.dialect.subscribe_message(wire_symbol))
        logger.info(f"Subscribed to {self.dialect.exchange} ticker updates for {wire_symbol}")
        return True

    async def unsubscribe(self, wire_symbol: str) -> None:
        """Remove a subscription, sending an unsubscribe frame when connected."""
        if self._subscribers.pop(wire_symbol, None) is None:
            logger.debug(f"No subscription to remove for {wire_symbol}")
            return

        if self.is_connected:
            await self._commands.put(self.dialect.unsubscribe_message(wire_symbol))
        logger.info(
            f"Unsubscribed from {self.dialect.exchange} ticker updates for {wire_symbol}"
        )

    async def flush(self) -> None:
        """Wait until every queued command has been written to the socket."""
        await self._commands.join()

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def ensure_connected(self) -> None:
        """
        Open the connection if it is not open yet.

        Raises:
            StreamConnectionError: If every connect attempt failed

        """
        async with self._connect_lock:
            if self.is_connected:
                return

            attempts = self.stream_config.max_connect_attempts
            delay = self.stream_config.reconnect_interval
            last_error: Exception | None = None

            for attempt in range(1, attempts + 1):
                self._transition(ConnectionState.CONNECTING)
                logger.info(
                    f"Connecting to {self.dialect.exchange} WebSocket "
                    f"(attempt {attempt}/{attempts})..."
                )
                try:
                    connection = await self._connect(self.url)
                except (OSError, WebSocketException) as e:
                    self._transition(ConnectionState.DISCONNECTED)
                    last_error = e
                    logger.warning(f"Connection attempt {attempt} failed: {e}")
                    if attempt < attempts:
                        await self._sleep(delay)
                        delay = min(
                            delay * self.stream_config.backoff_factor,
                            self.stream_config.max_reconnect_interval,
                        )
                    continue

                self._connection = connection
                self._transition(ConnectionState.CONNECTED)
                self._writer_task = asyncio.create_task(self._write_loop(connection))
                self._reader_task = asyncio.create_task(self._read_loop(connection))
                logger.info(f"{self.dialect.exchange} WebSocket connection established")
                return

        raise StreamConnectionError(
            f"Failed to establish WebSocket connection after {attempts} attempts: "
            f"{last_error}",
            self.dialect.exchange,
        )

    async def disconnect(self) -> None:
        """Close the connection and drop every subscription."""
        self._closing = True
        self._disconnects += 1
        try:
            self._subscribers.clear()
            await self._teardown()
            # CONNECTING belongs to a connect still in flight
            if self._state is ConnectionState.CONNECTED:
                self._transition(ConnectionState.DISCONNECTED)
            logger.info(f"Disconnected from {self.dialect.exchange} WebSocket")
        finally:
            self._closing = False

    async def _teardown(self) -> None:
        """Stop both loops, close the socket and discard pending commands."""
        current = asyncio.current_task()
        tasks = [
            task
            for task in (self._reader_task, self._writer_task)
            if task is not None and task is not current and not task.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._reader_task = None
        self._writer_task = None

        connection, self._connection = self._connection, None
        if connection is not None:
            try:
                await connection.close()
            except (OSError, WebSocketException) as e:
                logger.error(f"Error closing WebSocket: {e}")

        self._clear_commands()

    def _clear_commands(self) -> None:
        while not self._commands.empty():
            self._commands.get_nowait()
            self._commands.task_done()

    async def _handle_drop(self) -> None:
        """React to the connection closing without a disconnect request."""
        disconnects = self._disconnects
        await self._teardown()
        if self._state is ConnectionState.CONNECTED:
            self._transition(ConnectionState.DISCONNECTED)

        if not self._subscribers:
            logger.info(f"{self.dialect.exchange} WebSocket closed with no subscriptions")
            return

        logger.warning(
            f"{self.dialect.exchange} WebSocket dropped with "
            f"{len(self._subscribers)} live subscriptions, reconnecting..."
        )
        await self._sleep(self.stream_config.reconnect_interval)
        if self._disconnects != disconnects:
            logger.info(f"{self.dialect.exchange} reconnect abandoned after disconnect")
            return
        try:
            await self.ensure_connected()
        except StreamConnectionError as e:
            logger.error(f"{e}; giving up until the next subscribe")
            return

        if self._disconnects != disconnects:
            logger.info(f"{self.dialect.exchange} closing connection opened after disconnect")
            await self._teardown()
            if self._state is ConnectionState.CONNECTED:
                self._transition(ConnectionState.DISCONNECTED)
            return

        for wire_symbol in list(self._subscribers):
            await self._commands.put(self.dialect.subscribe_message(wire_symbol))
        logger.info(
            f"Resubscribed to {len(self._subscribers)} {self.dialect.exchange} tickers"
        )

    # -------------------------------------------------------------------------
    # Loops
    # -------------------------------------------------------------------------

    async def _write_loop(self, connection: Any) -> None:
        """Send queued commands in order."""
        while True:
            command = await self._commands.get()
            try:
                await connection.send(command)
            except ConnectionClosed as e:
                logger.warning(f"Failed to send command, connection closed: {e}")
                return
            finally:
                self._commands.task_done()

    async def _read_loop(self, connection: Any) -> None:
        """Dispatch inbound frames until the connection closes."""
        try:
            async for raw in connection:
                await self._dispatch(raw)
        except ConnectionClosed as e:
            logger.warning(f"{self.dialect.exchange} WebSocket closed: {e}")

        if not self._closing and connection is self._connection:
            await self._handle_drop()

    async def _dispatch(self, raw: str | bytes) -> None:
        """Route one frame to its subscriber."""
        text = raw.decode(errors="replace") if isinstance(raw, bytes) else raw
        try:
            parsed = self.dialect.parse_message(text)
        except (ResponseFormatError, ValueError, ArithmeticError) as e:
            logger.warning(f"Dropping malformed frame: {e}")
            return
        if parsed is None:
            return

        wire_symbol, snapshot = parsed
        entry = self._subscribers.get(wire_symbol)
        if entry is None:
            logger.debug(f"Dropping update for unsubscribed symbol {wire_symbol}")
            return

        if self._sink is not None:
            try:
                await self._sink(snapshot, wire_symbol)
            except MarketFeedError as e:
                logger.error(f"Failed to store streamed ticker {wire_symbol}: {e}")

        _, callback = entry
        try:
            result = callback(snapshot)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Subscriber callback failed for {wire_symbol}: {e}")
