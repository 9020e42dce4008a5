"""
Tests for the streaming subscription manager and the Bybit stream dialect.

The WebSocket is replaced by an in-memory fake, so these tests drive the
full lifecycle: connect, subscribe, dispatch, drop, reconnect and
disconnect.
"""

import asyncio
import json
from decimal import Decimal

import pytest

from src.marketfeed.adapters.bybit.stream import BybitStreamDialect
from src.marketfeed.config import StreamConfig
from src.marketfeed.connection.manager import StreamSubscriptionManager
from src.marketfeed.enums import ConnectionState
from src.marketfeed.errors import ResponseFormatError, StoreUnavailableError
from src.marketfeed.model.ticker import TickerSnapshot
from tests.unit.marketfeed.helpers import FakeConnector, RecordingSleep, wait_for


def ticker_frame(symbol: str, price: str = "50000") -> dict:
    """Build a Bybit ticker push."""
    return {
        "topic": f"tickers.{symbol}",
        "type": "snapshot",
        "ts": 1700000000000,
        "data": {
            "symbol": symbol,
            "lastPrice": price,
            "volume24h": "10",
            "price24hPcnt": "0.01",
        },
    }


class SinkRecorder:
    """Snapshot sink that records what it receives."""

    def __init__(self) -> None:
        """Initialize with nothing received."""
        self.received: list[tuple[TickerSnapshot, str]] = []

    async def __call__(self, snapshot: TickerSnapshot, wire_symbol: str) -> None:
        """Record one snapshot."""
        self.received.append((snapshot, wire_symbol))


@pytest.fixture
def connector() -> FakeConnector:
    """Create a connector that always succeeds."""
    return FakeConnector()


@pytest.fixture
def sleep() -> RecordingSleep:
    """Create a recording sleep."""
    return RecordingSleep()


@pytest.fixture
def sink() -> SinkRecorder:
    """Create a recording sink."""
    return SinkRecorder()


@pytest.fixture
def manager(
    connector: FakeConnector, sleep: RecordingSleep, sink: SinkRecorder
) -> StreamSubscriptionManager:
    """Create a manager on the fake connection."""
    return StreamSubscriptionManager(
        BybitStreamDialect(),
        "wss://stream.test/v5/public/spot",
        StreamConfig(reconnect_interval=0.5, max_connect_attempts=3),
        connect=connector,
        sink=sink,
        sleep=sleep,
    )


class TestSubscribe:
    """Test subscribing and the connection it opens."""

    @pytest.mark.asyncio
    async def test_subscribe_opens_connection_and_sends_frame(
        self, manager: StreamSubscriptionManager, connector: FakeConnector
    ) -> None:
        """The first subscription connects and writes a subscribe frame."""
        assert manager.state is ConnectionState.DISCONNECTED

        subscribed = await manager.subscribe("BTCUSDT", lambda t: None, canonical="BTC/USDT")
        await manager.flush()

        assert subscribed is True
        assert manager.state is ConnectionState.CONNECTED
        assert connector.attempts == 1
        assert connector.latest.sent_json() == [
            {"op": "subscribe", "args": ["tickers.BTCUSDT"]}
        ]
        assert manager.subscribed_symbols == ["BTC/USDT"]

        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_second_subscription_reuses_connection(
        self, manager: StreamSubscriptionManager, connector: FakeConnector
    ) -> None:
        """One socket carries every subscription."""
        await manager.subscribe("BTCUSDT", lambda t: None)
        await manager.subscribe("ETHUSDT", lambda t: None)
        await manager.flush()

        assert connector.attempts == 1
        assert len(connector.latest.sent) == 2
        assert manager.subscription_count == 2

        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_connect_failure_reports_false(self, sleep: RecordingSleep) -> None:
        """Exhausted connect attempts leave no subscription behind."""
        connector = FakeConnector(failures=3)
        manager = StreamSubscriptionManager(
            BybitStreamDialect(),
            "wss://stream.test",
            StreamConfig(reconnect_interval=0.5, max_connect_attempts=3),
            connect=connector,
            sleep=sleep,
        )

        subscribed = await manager.subscribe("BTCUSDT", lambda t: None)

        assert subscribed is False
        assert connector.attempts == 3
        assert manager.state is ConnectionState.DISCONNECTED
        assert manager.subscription_count == 0
        assert sleep.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_connect_succeeds_after_transient_failure(
        self, sleep: RecordingSleep
    ) -> None:
        """A failed attempt is retried with backoff."""
        connector = FakeConnector(failures=1)
        manager = StreamSubscriptionManager(
            BybitStreamDialect(),
            "wss://stream.test",
            StreamConfig(reconnect_interval=0.5),
            connect=connector,
            sleep=sleep,
        )

        assert await manager.subscribe("BTCUSDT", lambda t: None) is True
        assert connector.attempts == 2
        assert sleep.delays == [0.5]

        await manager.disconnect()

    def test_invalid_transition_is_rejected(
        self, manager: StreamSubscriptionManager
    ) -> None:
        """DISCONNECTED cannot jump straight to CONNECTED."""
        with pytest.raises(RuntimeError, match="Invalid stream state transition"):
            manager._transition(ConnectionState.CONNECTED)


class TestDispatch:
    """Test routing inbound frames to subscribers."""

    @pytest.mark.asyncio
    async def test_ticker_reaches_sink_and_callback(
        self,
        manager: StreamSubscriptionManager,
        connector: FakeConnector,
        sink: SinkRecorder,
    ) -> None:
        """A push for a subscribed symbol is delivered to both."""
        received: list[TickerSnapshot] = []
        await manager.subscribe("BTCUSDT", received.append, canonical="BTC/USDT")

        connector.latest.push(ticker_frame("BTCUSDT", "51000"))
        await wait_for(lambda: len(received) == 1)

        assert received[0].symbol == "BTC/USDT"
        assert received[0].price == Decimal("51000")
        assert received[0].change_24h == Decimal("1.00")
        assert sink.received[0][1] == "BTCUSDT"

        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_async_callbacks_are_awaited(
        self, manager: StreamSubscriptionManager, connector: FakeConnector
    ) -> None:
        """Coroutine callbacks run to completion."""
        received: list[TickerSnapshot] = []

        async def on_ticker(snapshot: TickerSnapshot) -> None:
            received.append(snapshot)

        await manager.subscribe("ETHUSDT", on_ticker)
        connector.latest.push(ticker_frame("ETHUSDT", "3000"))
        await wait_for(lambda: len(received) == 1)

        assert received[0].price == Decimal("3000")

        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_non_ticker_frames_are_skipped(
        self, manager: StreamSubscriptionManager, connector: FakeConnector
    ) -> None:
        """Acks, pongs and malformed frames never reach the callback."""
        received: list[TickerSnapshot] = []
        await manager.subscribe("BTCUSDT", received.append)
        connection = connector.latest

        connection.push({"success": True, "ret_msg": "", "op": "subscribe", "conn_id": "c1"})
        connection.push({"success": True, "ret_msg": "pong", "op": "ping"})
        connection.push("not json at all")
        connection.push({"topic": "tickers.BTCUSDT", "data": {"symbol": "BTCUSDT"}})
        connection.push(ticker_frame("BTCUSDT", "1"))
        await wait_for(lambda: len(received) == 1)

        assert received[0].price == Decimal("1")
        assert manager.is_connected

        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_unsubscribed_symbols_are_dropped(
        self,
        manager: StreamSubscriptionManager,
        connector: FakeConnector,
        sink: SinkRecorder,
    ) -> None:
        """Pushes for symbols nobody subscribed to are ignored."""
        received: list[TickerSnapshot] = []
        await manager.subscribe("BTCUSDT", received.append)

        connector.latest.push(ticker_frame("SOLUSDT"))
        connector.latest.push(ticker_frame("BTCUSDT"))
        await wait_for(lambda: len(received) == 1)

        assert [snapshot.symbol for snapshot in received] == ["BTC/USDT"]
        assert [wire for _, wire in sink.received] == ["BTCUSDT"]

        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_callback_failure_is_isolated(
        self, manager: StreamSubscriptionManager, connector: FakeConnector
    ) -> None:
        """A raising callback does not stop dispatch."""
        calls: list[TickerSnapshot] = []

        def flaky(snapshot: TickerSnapshot) -> None:
            calls.append(snapshot)
            if len(calls) == 1:
                raise RuntimeError("subscriber bug")

        await manager.subscribe("BTCUSDT", flaky)
        connector.latest.push(ticker_frame("BTCUSDT", "1"))
        connector.latest.push(ticker_frame("BTCUSDT", "2"))
        await wait_for(lambda: len(calls) == 2)

        assert calls[1].price == Decimal("2")
        assert manager.is_connected

        await manager.disconnect()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_price", ["abc", "-5", "NaN-ish"])
    async def test_invalid_price_push_is_dropped(
        self,
        manager: StreamSubscriptionManager,
        connector: FakeConnector,
        bad_price: str,
    ) -> None:
        """A push with an unusable price is skipped and the stream keeps going."""
        received: list[TickerSnapshot] = []
        await manager.subscribe("BTCUSDT", received.append)

        # Given a bad push followed by a good one
        connector.latest.push(ticker_frame("BTCUSDT", bad_price))
        connector.latest.push(ticker_frame("BTCUSDT", "50000"))

        # Then only the good one is delivered
        await wait_for(lambda: len(received) == 1)
        assert received[0].price == Decimal("50000")
        assert manager.is_connected
        assert connector.attempts == 1

        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_bytes_frames_are_decoded(
        self, manager: StreamSubscriptionManager, connector: FakeConnector
    ) -> None:
        """Binary frames are parsed, and undecodable ones are skipped."""
        received: list[TickerSnapshot] = []
        await manager.subscribe("BTCUSDT", received.append)

        connector.latest.push(b"\xff\xfe")
        connector.latest.push(json.dumps(ticker_frame("BTCUSDT", "7")).encode())
        await wait_for(lambda: len(received) == 1)

        assert received[0].price == Decimal("7")
        assert manager.is_connected

        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_sink_failure_does_not_stop_delivery(
        self, connector: FakeConnector, sleep: RecordingSleep
    ) -> None:
        """A failing sink is logged and the callback still runs."""

        async def broken_sink(snapshot: TickerSnapshot, wire_symbol: str) -> None:
            raise StoreUnavailableError("store down")

        manager = StreamSubscriptionManager(
            BybitStreamDialect(),
            "wss://stream.test/v5/public/spot",
            StreamConfig(reconnect_interval=0.5),
            connect=connector,
            sink=broken_sink,
            sleep=sleep,
        )
        received: list[TickerSnapshot] = []
        await manager.subscribe("BTCUSDT", received.append)

        connector.latest.push(ticker_frame("BTCUSDT", "1"))
        connector.latest.push(ticker_frame("BTCUSDT", "2"))
        await wait_for(lambda: len(received) == 2)

        assert manager.is_connected

        await manager.disconnect()


class TestUnsubscribeAndDisconnect:
    """Test removing subscriptions and closing the stream."""

    @pytest.mark.asyncio
    async def test_unsubscribe_sends_frame_and_stops_delivery(
        self, manager: StreamSubscriptionManager, connector: FakeConnector
    ) -> None:
        """After unsubscribing, the symbol's pushes are dropped."""
        btc: list[TickerSnapshot] = []
        eth: list[TickerSnapshot] = []
        await manager.subscribe("BTCUSDT", btc.append)
        await manager.subscribe("ETHUSDT", eth.append)

        await manager.unsubscribe("BTCUSDT")
        await manager.flush()
        connector.latest.push(ticker_frame("BTCUSDT"))
        connector.latest.push(ticker_frame("ETHUSDT"))
        await wait_for(lambda: len(eth) == 1)

        assert btc == []
        assert connector.latest.sent_json()[-1] == {
            "op": "unsubscribe",
            "args": ["tickers.BTCUSDT"],
        }
        assert manager.subscription_count == 1

        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_unsubscribe_unknown_symbol_is_a_noop(
        self, manager: StreamSubscriptionManager, connector: FakeConnector
    ) -> None:
        """Nothing is sent for symbols without a subscription."""
        await manager.unsubscribe("BTCUSDT")

        assert connector.attempts == 0
        assert manager.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_disconnect_clears_everything(
        self, manager: StreamSubscriptionManager, connector: FakeConnector
    ) -> None:
        """Disconnect closes the socket and forgets subscriptions."""
        await manager.subscribe("BTCUSDT", lambda t: None)
        connection = connector.latest

        await manager.disconnect()

        assert connection.closed is True
        assert manager.state is ConnectionState.DISCONNECTED
        assert manager.subscription_count == 0
        assert connector.attempts == 1

    @pytest.mark.asyncio
    async def test_disconnect_when_never_connected(
        self, manager: StreamSubscriptionManager
    ) -> None:
        """Disconnecting an idle manager is harmless."""
        await manager.disconnect()

        assert manager.state is ConnectionState.DISCONNECTED


class TestReconnect:
    """Test recovery from dropped connections."""

    @pytest.mark.asyncio
    async def test_drop_reconnects_and_resubscribes(
        self,
        manager: StreamSubscriptionManager,
        connector: FakeConnector,
        sleep: RecordingSleep,
    ) -> None:
        """Every live subscription is re-issued on the new socket."""
        received: list[TickerSnapshot] = []
        await manager.subscribe("BTCUSDT", received.append)
        await manager.subscribe("ETHUSDT", lambda t: None)
        await manager.flush()
        first = connector.latest

        first.drop()
        await wait_for(
            lambda: len(connector.connections) == 2 and len(connector.latest.sent) == 2
        )

        assert manager.is_connected
        assert first.closed is True
        assert sorted(json.dumps(frame) for frame in connector.latest.sent_json()) == sorted(
            json.dumps({"op": "subscribe", "args": [f"tickers.{symbol}"]})
            for symbol in ("BTCUSDT", "ETHUSDT")
        )
        assert sleep.delays == [0.5]

        connector.latest.push(ticker_frame("BTCUSDT"))
        await wait_for(lambda: len(received) == 1)

        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_drop_without_subscriptions_stays_down(
        self, manager: StreamSubscriptionManager, connector: FakeConnector
    ) -> None:
        """A socket with nothing to resubscribe is not reopened."""
        await manager.subscribe("BTCUSDT", lambda t: None)
        await manager.flush()
        await manager.unsubscribe("BTCUSDT")
        await manager.flush()

        connector.latest.drop()
        await wait_for(lambda: manager.state is ConnectionState.DISCONNECTED)

        assert connector.attempts == 1

    @pytest.mark.asyncio
    async def test_disconnect_during_reconnect_delay_stays_down(
        self, connector: FakeConnector
    ) -> None:
        """A disconnect while waiting to reconnect cancels the reconnect."""
        delays: list[float] = []

        async def disconnect_while_waiting(seconds: float) -> None:
            await manager.disconnect()
            delays.append(seconds)

        manager = StreamSubscriptionManager(
            BybitStreamDialect(),
            "wss://stream.test",
            StreamConfig(reconnect_interval=0.5),
            connect=connector,
            sleep=disconnect_while_waiting,
        )
        await manager.subscribe("BTCUSDT", lambda t: None)
        await manager.flush()

        connector.latest.drop()
        await wait_for(lambda: delays == [0.5])
        for _ in range(5):
            await asyncio.sleep(0)

        assert connector.attempts == 1
        assert manager.state is ConnectionState.DISCONNECTED
        assert manager.subscription_count == 0

    @pytest.mark.asyncio
    async def test_connection_opened_after_disconnect_is_closed(
        self, sleep: RecordingSleep
    ) -> None:
        """A reconnect that completes after a disconnect is torn down."""

        class DisconnectOnReconnect(FakeConnector):
            async def __call__(self, url: str):
                connection = await super().__call__(url)
                if self.attempts == 2:
                    await manager.disconnect()
                return connection

        connector = DisconnectOnReconnect()
        manager = StreamSubscriptionManager(
            BybitStreamDialect(),
            "wss://stream.test",
            StreamConfig(reconnect_interval=0.5),
            connect=connector,
            sleep=sleep,
        )
        await manager.subscribe("BTCUSDT", lambda t: None)
        await manager.flush()

        connector.latest.drop()
        await wait_for(
            lambda: len(connector.connections) == 2 and connector.latest.closed
        )
        await wait_for(lambda: manager.state is ConnectionState.DISCONNECTED)

        assert connector.latest.sent == []
        assert manager.subscription_count == 0


class TestBybitStreamDialect:
    """Test Bybit frame building and parsing."""

    def test_frames(self) -> None:
        """Subscribe and unsubscribe use the tickers topic."""
        dialect = BybitStreamDialect()

        assert json.loads(dialect.subscribe_message("BTCUSDT")) == {
            "op": "subscribe",
            "args": ["tickers.BTCUSDT"],
        }
        assert json.loads(dialect.unsubscribe_message("BTCUSDT")) == {
            "op": "unsubscribe",
            "args": ["tickers.BTCUSDT"],
        }

    def test_parse_ticker_push(self) -> None:
        """Ticker pushes carry the wire symbol and a canonical snapshot."""
        parsed = BybitStreamDialect().parse_message(json.dumps(ticker_frame("ETHUSDT", "3000")))

        assert parsed is not None
        wire_symbol, snapshot = parsed
        assert wire_symbol == "ETHUSDT"
        assert snapshot.exchange == "BYBIT"
        assert snapshot.symbol == "ETH/USDT"
        assert snapshot.bid == Decimal("3000")

    def test_ack_and_other_topics_are_ignored(self) -> None:
        """Frames without ticker data parse to None."""
        dialect = BybitStreamDialect()

        assert dialect.parse_message('{"success": false, "op": "subscribe", "ret_msg": "x"}') is None
        assert dialect.parse_message('{"topic": "orderbook.1.BTCUSDT", "data": {}}') is None

    def test_malformed_frames_raise(self) -> None:
        """Invalid JSON and incomplete pushes are format errors."""
        dialect = BybitStreamDialect()

        with pytest.raises(ResponseFormatError):
            dialect.parse_message("{")
        with pytest.raises(ResponseFormatError):
            dialect.parse_message('{"topic": "tickers.BTCUSDT"}')

    @pytest.mark.parametrize("bad_price", ["abc", "-5"])
    def test_invalid_ticker_values_raise_format_error(self, bad_price: str) -> None:
        """Unusable numbers surface as format errors, not arithmetic errors."""
        with pytest.raises(ResponseFormatError, match="Invalid ticker push"):
            BybitStreamDialect().parse_message(
                json.dumps(ticker_frame("BTCUSDT", bad_price))
            )
