"""
Unit tests for RealtimeClient.

The client runs against FakeTransportFactory connections with millisecond
timers; each test drives the server side of the fake connection directly.
"""

import asyncio
from unittest.mock import MagicMock, patch

import pytest

from roomwire.client.client import RAW_MESSAGE_EVENT, RealtimeClient
from roomwire.client.connection_state import ConnectionState, LifecycleEvent
from roomwire.config.models import ClientSettings, ReconnectionPolicy
from roomwire.exceptions import (
    ClientDisconnectedError,
    ConnectionTimeoutError,
    FrameEncodeError,
    TransportError,
)
from roomwire.protocol.close_codes import NORMAL_CLOSURE, PONG_TIMEOUT
from roomwire.protocol.codec import decode_frame
from roomwire.tests.fixtures.fakes import wait_until

URL = "ws://test/ws/chat?channels=lobby"


class LifecycleRecorder:
    """Collects lifecycle notifications as (event, args) tuples."""

    def __init__(self) -> None:
        self.events: list[tuple] = []

    def __call__(self, event, *args) -> None:
        self.events.append((event, *args))

    def names(self) -> list[str]:
        return [entry[0] for entry in self.events]


@pytest.fixture
async def make_client(transport_factory):
    clients: list[RealtimeClient] = []

    def _make(settings: ClientSettings, **kwargs) -> RealtimeClient:
        client = RealtimeClient(URL, settings, transport_factory=transport_factory, name="test-client", **kwargs)
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.close()
    await asyncio.sleep(0)


@pytest.fixture
async def connected(make_client, fast_client_settings, transport_factory):
    client = make_client(fast_client_settings)
    client.connect()
    await client.wait_for_connection(timeout=1.0)
    return client


class TestConnect:
    """Connection establishment and lifecycle notifications."""

    @pytest.mark.asyncio
    async def test_connect_reaches_connected(self, make_client, fast_client_settings, transport_factory):
        client = make_client(fast_client_settings)
        recorder = LifecycleRecorder()
        client.lifecycle.on("*", recorder)

        client.connect()
        await client.wait_for_connection(timeout=1.0)

        assert client.state is ConnectionState.CONNECTED
        assert client.is_connected
        assert transport_factory.opened_urls == [URL]
        await wait_until(lambda: LifecycleEvent.CONNECTED.value in recorder.names())
        assert recorder.events[:2] == [
            (LifecycleEvent.STATE_CHANGE.value, ConnectionState.CONNECTING),
            (LifecycleEvent.CONNECTING.value, 1),
        ]

    @pytest.mark.asyncio
    async def test_connect_ignored_while_connected(self, connected, transport_factory):
        connected.connect()
        await asyncio.sleep(0.02)
        assert len(transport_factory.connections) == 1

    @pytest.mark.asyncio
    async def test_connection_timeout_fails_waiters(self, make_client, transport_factory):
        settings = ClientSettings(
            reconnection=ReconnectionPolicy(enabled=False), connection_timeout=0.05, ping_interval=0
        )
        transport_factory.hang = True
        client = make_client(settings)

        client.connect()
        with pytest.raises(ConnectionTimeoutError):
            await client.wait_for_connection(timeout=1.0)
        assert client.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_wait_for_connection_times_out(self, make_client, transport_factory):
        transport_factory.hang = True
        client = make_client(ClientSettings(connection_timeout=5.0, ping_interval=0))
        client.connect()
        with pytest.raises(ConnectionTimeoutError):
            await client.wait_for_connection(timeout=0.02)

    @pytest.mark.asyncio
    async def test_disconnect_fails_pending_waiter(self, make_client, fast_client_settings, transport_factory):
        transport_factory.hang = True
        client = make_client(fast_client_settings)
        client.connect()
        waiter = asyncio.create_task(client.wait_for_connection(timeout=1.0))
        await asyncio.sleep(0.01)

        await client.disconnect()

        with pytest.raises(ClientDisconnectedError):
            await waiter
        assert client.state is ConnectionState.DISCONNECTED


class TestEmit:
    """Outbound application events."""

    @pytest.mark.asyncio
    async def test_emit_sends_envelope(self, connected, transport_factory):
        assert await connected.emit("chat.send", {"text": "hi"}, channel="lobby") is True
        assert transport_factory.latest.sent_frames() == [
            {"type": "event", "channel": "lobby", "data": {"event": "chat.send", "data": {"text": "hi"}}}
        ]

    @pytest.mark.asyncio
    async def test_emit_while_offline_queues_and_flushes_in_order(
        self, make_client, fast_client_settings, transport_factory
    ):
        client = make_client(fast_client_settings)
        assert await client.emit("a", 1) is False
        assert await client.emit("b", 2) is False
        assert client.queued_messages == 2

        client.connect()
        await client.wait_for_connection(timeout=1.0)

        events = [frame["data"]["event"] for frame in transport_factory.latest.sent_frames()]
        assert events == ["a", "b"]
        assert client.queued_messages == 0

    @pytest.mark.asyncio
    async def test_emit_queue_keeps_newest(self, make_client, fast_client_settings):
        client = make_client(fast_client_settings)
        for n in range(fast_client_settings.max_queue_size + 1):
            await client.emit(f"e{n}")
        assert client.queued_messages == fast_client_settings.max_queue_size
        assert client.connection_info()["dropped_messages"] == 1

    @pytest.mark.asyncio
    async def test_emit_send_failure_queues(self, connected, transport_factory):
        transport_factory.latest.fail_sends = True
        assert await connected.emit("x") is False
        assert connected.queued_messages == 1

    @pytest.mark.asyncio
    async def test_emit_unserializable_raises(self, connected):
        with pytest.raises(FrameEncodeError):
            await connected.emit("x", object())


class TestInbound:
    """Inbound frame dispatch."""

    @pytest.mark.asyncio
    async def test_envelope_dispatches_by_event_name(self, connected, transport_factory):
        handler = MagicMock()
        connected.on("chat.message", handler)

        transport_factory.latest.feed_frame(
            {"type": "event", "channel": "lobby", "data": {"event": "chat.message", "data": {"text": "hi"}}}
        )

        await wait_until(lambda: handler.called)
        handler.assert_called_once_with({"text": "hi"})

    @pytest.mark.asyncio
    async def test_wildcard_receives_event_name(self, connected, transport_factory):
        wildcard = MagicMock()
        connected.on("*", wildcard)

        transport_factory.latest.feed_frame({"type": "event", "data": {"event": "joined", "data": "u1"}})

        await wait_until(lambda: wildcard.called)
        wildcard.assert_called_once_with("joined", "u1")

    @pytest.mark.asyncio
    async def test_raw_event_dispatches_by_channel(self, connected, transport_factory):
        news = MagicMock()
        raw = MagicMock()
        connected.on("news", news)
        connected.on(RAW_MESSAGE_EVENT, raw)

        transport_factory.latest.feed_frame({"type": "event", "channel": "news", "data": {"headline": "x"}})
        transport_factory.latest.feed_frame({"type": "event", "data": 5})

        await wait_until(lambda: raw.called)
        news.assert_called_once_with({"headline": "x"})
        raw.assert_called_once_with(5)

    @pytest.mark.asyncio
    async def test_ping_is_answered_with_pong(self, connected, transport_factory):
        connection = transport_factory.latest
        connection.feed_frame({"type": "ping"})
        await wait_until(lambda: {"type": "pong"} in connection.sent_frames())

    @pytest.mark.asyncio
    async def test_invalid_frames_are_skipped(self, connected, transport_factory):
        handler = MagicMock()
        connected.on("after", handler)
        connection = transport_factory.latest

        connection.feed("garbage")
        connection.feed_frame({"type": "event", "data": {"event": "after"}})

        await wait_until(lambda: handler.called)
        assert connected.is_connected

    @pytest.mark.asyncio
    async def test_oversized_number_frame_is_skipped(self, connected, transport_factory):
        handler = MagicMock()
        connected.on("after", handler)
        connection = transport_factory.latest

        connection.feed('{"type": "event", "data": ' + "9" * 5000 + "}")
        connection.feed_frame({"type": "event", "data": {"event": "after"}})

        await wait_until(lambda: handler.called)
        assert connected.is_connected
        assert len(transport_factory.connections) == 1

    @pytest.mark.asyncio
    async def test_frame_handling_error_keeps_reader_alive(self, connected, transport_factory):
        """A frame that blows up during handling is logged and the next frame still arrives."""
        handler = MagicMock()
        connected.on("after", handler)
        connection = transport_factory.latest
        calls = {"n": 0}

        def flaky_decode(raw):
            calls["n"] += 1
            if calls["n"] == 1:
                raise ValueError("undecodable frame")
            return decode_frame(raw)

        with patch("roomwire.client.client.decode_frame", side_effect=flaky_decode):
            connection.feed("first")
            connection.feed_frame({"type": "event", "data": {"event": "after"}})
            await wait_until(lambda: handler.called)

        assert calls["n"] == 2
        assert connected.state is ConnectionState.CONNECTED
        assert len(transport_factory.connections) == 1

    @pytest.mark.asyncio
    async def test_off_stops_delivery(self, connected, transport_factory):
        handler = MagicMock()
        marker = MagicMock()
        connected.on("chat", handler)
        connected.on("marker", marker)
        assert connected.off("chat", handler) == 1

        transport_factory.latest.feed_frame({"type": "event", "data": {"event": "chat"}})
        transport_factory.latest.feed_frame({"type": "event", "data": {"event": "marker"}})

        await wait_until(lambda: marker.called)
        handler.assert_not_called()


class TestReconnection:
    """Automatic reconnection and backoff."""

    @pytest.mark.asyncio
    async def test_abnormal_close_reconnects(self, connected, transport_factory):
        recorder = LifecycleRecorder()
        connected.lifecycle.on("*", recorder)
        first = transport_factory.latest

        first.drop(1006, "network")

        await wait_until(lambda: len(transport_factory.connections) == 2 and connected.is_connected)
        assert recorder.events[:4] == [
            (LifecycleEvent.STATE_CHANGE.value, ConnectionState.RECONNECTING),
            (LifecycleEvent.CLOSE.value, 1006, "network"),
            (LifecycleEvent.DISCONNECTED.value, 1006, "network"),
            (LifecycleEvent.RECONNECTING.value, 1, 0.01),
        ]
        assert connected.connection_info()["reconnect_attempts"] == 0

    @pytest.mark.asyncio
    async def test_failed_open_notifies_error_before_reconnecting(
        self, make_client, fast_client_settings, transport_factory
    ):
        refused = TransportError("refused", transport="fake")
        transport_factory.failures.append(refused)
        client = make_client(fast_client_settings)
        recorder = LifecycleRecorder()
        client.lifecycle.on("*", recorder)

        client.connect()

        await wait_until(lambda: client.is_connected)
        assert recorder.events[2:5] == [
            (LifecycleEvent.STATE_CHANGE.value, ConnectionState.RECONNECTING),
            (LifecycleEvent.ERROR.value, refused),
            (LifecycleEvent.RECONNECTING.value, 1, 0.01),
        ]

    @pytest.mark.asyncio
    async def test_open_completing_after_disconnect_is_discarded(
        self, make_client, fast_client_settings, transport_factory
    ):
        transport_factory.hang = True
        client = make_client(fast_client_settings)
        connected_events = MagicMock()
        client.lifecycle.on(LifecycleEvent.CONNECTED.value, connected_events)
        client.connect()
        await wait_until(lambda: len(transport_factory.opened_urls) == 1)

        await client.disconnect()
        transport_factory.release()
        await asyncio.sleep(0.05)

        assert client.state is ConnectionState.DISCONNECTED
        assert transport_factory.connections == []
        connected_events.assert_not_called()

    @pytest.mark.asyncio
    async def test_open_hanging_across_reconnect_leaves_one_connection(
        self, make_client, fast_client_settings, transport_factory
    ):
        transport_factory.hang = True
        client = make_client(fast_client_settings)
        client.connect()
        await wait_until(lambda: len(transport_factory.opened_urls) == 1)

        transport_factory.hang = False
        await client.reconnect()
        await client.wait_for_connection(timeout=1.0)
        transport_factory.release()
        await asyncio.sleep(0.05)

        assert len(transport_factory.opened_urls) == 2
        assert len(transport_factory.connections) == 1
        assert client.state is ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_earlier_connection_traffic_ignored_after_reconnect(self, connected, transport_factory):
        stale = MagicMock()
        connected.on("stale", stale)
        first = transport_factory.latest
        recorder = LifecycleRecorder()
        connected.lifecycle.on("*", recorder)

        first.feed_frame({"type": "event", "data": {"event": "stale"}})
        await connected.reconnect()
        await connected.wait_for_connection(timeout=1.0)
        first.drop(1006, "late")
        await asyncio.sleep(0.05)

        stale.assert_not_called()
        assert connected.state is ConnectionState.CONNECTED
        assert len(transport_factory.connections) == 2
        assert LifecycleEvent.CLOSE.value not in recorder.names()
        assert LifecycleEvent.RECONNECTING.value not in recorder.names()

    @pytest.mark.asyncio
    async def test_clean_close_does_not_reconnect(self, connected, transport_factory):
        transport_factory.latest.drop(NORMAL_CLOSURE, "bye")

        await wait_until(lambda: connected.state is ConnectionState.DISCONNECTED)
        await asyncio.sleep(0.05)
        assert len(transport_factory.connections) == 1

    @pytest.mark.asyncio
    async def test_exhaustion_enters_error_state(self, make_client, fast_client_settings, transport_factory):
        """After max_attempts failed retries the client stops in error."""
        for _ in range(4):
            transport_factory.failures.append(TransportError("refused", transport="fake"))
        client = make_client(fast_client_settings)
        errors = MagicMock()
        client.lifecycle.on(LifecycleEvent.ERROR.value, errors)

        client.connect()

        await wait_until(lambda: client.state is ConnectionState.ERROR)
        await asyncio.sleep(0.1)
        assert len(transport_factory.opened_urls) == 4
        assert errors.call_count == 4

    @pytest.mark.asyncio
    async def test_connect_after_error_rearms(self, make_client, fast_client_settings, transport_factory):
        """A failed first attempt after connect() from error still schedules a retry."""
        for _ in range(5):
            transport_factory.failures.append(TransportError("refused", transport="fake"))
        client = make_client(fast_client_settings)
        reconnecting = MagicMock()
        client.lifecycle.on(LifecycleEvent.RECONNECTING.value, reconnecting)
        client.connect()
        await wait_until(lambda: client.state is ConnectionState.ERROR)
        assert reconnecting.call_count == 3
        reconnecting.reset_mock()

        client.connect()

        await wait_until(lambda: reconnecting.called)
        reconnecting.assert_called_once_with(1, 0.01)
        await client.wait_for_connection(timeout=1.0)
        assert len(transport_factory.opened_urls) == 6

    @pytest.mark.asyncio
    async def test_disconnect_cancels_scheduled_reconnect(self, make_client, transport_factory):
        settings = ClientSettings(
            reconnection=ReconnectionPolicy(initial_delay=0.1, max_delay=0.1), connection_timeout=0.5, ping_interval=0
        )
        transport_factory.failures.append(TransportError("refused", transport="fake"))
        client = make_client(settings)
        client.connect()
        await wait_until(lambda: client.state is ConnectionState.RECONNECTING)

        await client.disconnect()
        await asyncio.sleep(0.2)

        assert client.state is ConnectionState.DISCONNECTED
        assert len(transport_factory.opened_urls) == 1

    @pytest.mark.asyncio
    async def test_manual_reconnect_replaces_connection(self, connected, transport_factory):
        first = transport_factory.latest

        await connected.reconnect()
        await connected.wait_for_connection(timeout=1.0)

        assert transport_factory.latest is not first
        assert first.closed_by_client == (NORMAL_CLOSURE, "Reconnect")

    @pytest.mark.asyncio
    async def test_disconnect_closes_and_notifies(self, connected, transport_factory):
        disconnected = MagicMock()
        connected.lifecycle.on(LifecycleEvent.DISCONNECTED.value, disconnected)

        await connected.disconnect()

        assert transport_factory.latest.closed_by_client == (NORMAL_CLOSURE, "Client disconnect")
        disconnected.assert_called_once_with(NORMAL_CLOSURE, "Client disconnect")
        assert not connected.is_connected


class TestKeepalive:
    """Client keepalive wired to a live connection."""

    @pytest.mark.asyncio
    async def test_missing_pong_forces_close(self, make_client, transport_factory):
        settings = ClientSettings(
            reconnection=ReconnectionPolicy(enabled=False),
            connection_timeout=0.5,
            ping_interval=0.02,
            pong_timeout=0.02,
        )
        client = make_client(settings)
        client.connect()
        await client.wait_for_connection(timeout=1.0)
        connection = transport_factory.latest

        await wait_until(lambda: connection.closed_by_client is not None)

        assert connection.closed_by_client == (PONG_TIMEOUT, "Pong timeout")
        assert {"type": "ping"} in connection.sent_frames()
        await wait_until(lambda: client.state is ConnectionState.DISCONNECTED)
