"""
Reconnecting realtime client.

RealtimeClient owns one logical connection to a room. It runs at most one
connection attempt at a time, retries abnormal closes with exponential backoff,
buffers outbound messages while offline and keeps the link alive with
protocol-level pings.

Each attempt is tagged with a monotonically increasing id. Every callback from
the transport (open, message, close, timeout) carries the id of the attempt
that produced it and is ignored once a newer attempt or an explicit disconnect
has superseded that attempt.

Typical use::

    client = RealtimeClient("ws://localhost:8000/ws/chat?channels=lobby")

    @client.on("chat.message")
    def show(data):
        print(data["text"])

    client.connect()
    await client.wait_for_connection()
    await client.emit("chat.send", {"text": "hello"})
"""

import asyncio
import time
from collections.abc import Callable
from typing import Any

from ..config import get_config
from ..config.models import ClientSettings
from ..events.listener_registry import ListenerRegistry
from ..exceptions import (
    ClientConnectionError,
    ClientDisconnectedError,
    ConnectionLostError,
    ConnectionTimeoutError,
    RoomwireError,
    TransportError,
)
from ..protocol.close_codes import NORMAL_CLOSURE, PONG_TIMEOUT, is_clean_close
from ..protocol.codec import decode_frame, encode_frame
from ..protocol.frames import Frame, FrameType
from ..structured_logging.enhanced_logging_config import get_logger
from .connection_state import ConnectionState, LifecycleEvent
from .connection_state_machine import ClientConnectionStateMachine
from .foreground import ForegroundSignal
from .keepalive import KeepaliveController
from .message_queue import MessageQueue, QueuedMessage
from .reconnection import ReconnectionManager
from .transport import TransportConnection, TransportFactory, WebsocketsTransportFactory

logger = get_logger(__name__)

# Event name used for raw event frames that carry neither an envelope nor a channel
RAW_MESSAGE_EVENT = "message"


class RealtimeClient:
    """
    Client side of a roomwire connection.

    Application events are registered with on/off/once and sent with emit.
    Connection lifecycle notifications are published on the ``lifecycle``
    registry using the LifecycleEvent names:

    - state_change(state)
    - connecting(attempt_id)
    - connected()
    - close(code, reason) and disconnected(code, reason)
    - error(exception)
    - reconnecting(attempt, delay)
    """

    def __init__(
        self,
        url: str,
        settings: ClientSettings | None = None,
        *,
        transport_factory: TransportFactory | None = None,
        foreground_signal: ForegroundSignal | None = None,
        clock: Callable[[], float] = time.monotonic,
        name: str | None = None,
    ) -> None:
        """
        Initialize the client. No connection is made until connect() is called.

        Args:
            url: WebSocket URL of the room
            settings: Client settings; loaded from the environment when omitted
            transport_factory: Transport to use; defaults to the websockets library
            foreground_signal: Optional foreground/background signal for keepalive resync
            clock: Monotonic time source used by the keepalive
            name: Name used in log entries
        """
        self.url = url
        self.settings = settings or get_config().client
        self.name = name or url

        self._transport_factory = transport_factory or WebsocketsTransportFactory()
        self._foreground_signal = foreground_signal
        self._clock = clock

        self._machine = ClientConnectionStateMachine(self.name)
        self._reconnection = ReconnectionManager(self.settings.reconnection)
        self._queue = MessageQueue(self.settings.max_queue_size)
        self._listeners = ListenerRegistry(f"{self.name}:events")
        self.lifecycle = ListenerRegistry(f"{self.name}:lifecycle")

        self._connection: TransportConnection | None = None
        self._keepalive: KeepaliveController | None = None
        self._ready = False

        self._attempt_id = 0
        self._settled_attempt = 0
        self._attempt_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._background_tasks: set[asyncio.Task] = set()
        self._waiters: set[asyncio.Future] = set()

    # ------------------------------------------------------------------ state

    @property
    def state(self) -> ConnectionState:
        return self._machine.connection_state

    @property
    def is_connected(self) -> bool:
        return (
            self._ready
            and self.state is ConnectionState.CONNECTED
            and self._connection is not None
            and self._connection.is_open
        )

    @property
    def queued_messages(self) -> int:
        return len(self._queue)

    def connection_info(self) -> dict[str, Any]:
        """Return a snapshot of the connection for diagnostics."""
        return {
            "state": self.state.value,
            "is_connected": self.is_connected,
            "is_connecting": self.state is ConnectionState.CONNECTING,
            "reconnect_attempts": self._reconnection.attempts,
            "next_reconnect_delay": self._reconnection.current_delay,
            "attempt_id": self._attempt_id,
            "queued_messages": len(self._queue),
            "dropped_messages": self._queue.dropped_count,
            **{f"machine_{key}": value for key, value in self._machine.get_stats().items() if key != "client"},
        }

    # -------------------------------------------------------- application API

    def on(self, event: str, handler: Callable[..., Any] | None = None) -> Any:
        """Register a handler for an application event (``"*"`` for all events)."""
        return self._listeners.on(event, handler)

    def off(self, event: str, handler: Callable[..., Any] | None = None) -> int:
        return self._listeners.off(event, handler)

    def once(self, event: str, handler: Callable[..., Any] | None = None) -> Any:
        return self._listeners.once(event, handler)

    async def emit(self, event: str, data: Any = None, *, channel: str | None = None) -> bool:
        """
        Send an application event to the room.

        While the connection is not ready the message is queued and sent, in
        order, once the next connection opens.

        Returns:
            True if the message was sent now, False if it was queued

        Raises:
            FrameEncodeError: If data is not JSON-serializable
        """
        payload = encode_frame(Frame.app_event(channel, event, data))

        if self.is_connected and self._connection is not None:
            try:
                await self._connection.send(payload)
                return True
            except TransportError as e:
                logger.warning("Send failed, queueing message", client=self.name, event_name=event, error=str(e))

        self._queue.enqueue(QueuedMessage(event=event, channel=channel, payload=payload))
        return False

    # ---------------------------------------------------------- connection API

    def connect(self) -> None:
        """
        Start connecting.

        Ignored while a connection attempt is in flight, while connected, and
        while a reconnection is already scheduled. Otherwise the reconnection
        budget starts over, so a client left in error retries again.
        """
        if self.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            logger.debug("connect() ignored", client=self.name, state=self.state.value)
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            logger.debug("connect() ignored, reconnection pending", client=self.name)
            return
        self._reconnection.reset()
        self._start_attempt()

    async def wait_for_connection(self, timeout: float | None = None) -> None:
        """
        Wait until the client is connected.

        Args:
            timeout: Seconds to wait; defaults to twice the connection timeout

        Raises:
            ConnectionTimeoutError: If the connection did not open in time
            ConnectionLostError: If the pending attempt failed or closed
            ClientDisconnectedError: If disconnect() was called while waiting
        """
        if self.is_connected:
            return

        if timeout is None:
            timeout = self.settings.connection_timeout * 2

        waiter: asyncio.Future = asyncio.get_running_loop().create_future()
        self._waiters.add(waiter)
        try:
            await asyncio.wait_for(waiter, timeout)
        except TimeoutError as e:
            raise ConnectionTimeoutError("Connection wait timeout", timeout=timeout) from e
        finally:
            self._waiters.discard(waiter)

    async def reconnect(self) -> None:
        """Drop the current connection and start a fresh attempt with a reset backoff."""
        logger.info("Manual reconnect triggered", client=self.name)
        self._reconnection.reset()
        await self._tear_down(ClientDisconnectedError("Reconnect requested"), reason="Reconnect")
        self._start_attempt()

    async def disconnect(self) -> None:
        """
        Close the connection without reconnecting.

        Cancels any scheduled reconnection. Automatic reconnection stays
        suppressed until the next connect().
        """
        logger.info("Disconnecting", client=self.name, state=self.state.value)
        changed = await self._tear_down(ClientDisconnectedError("Client disconnected"), reason="Client disconnect")
        if changed:
            await self._notify(LifecycleEvent.STATE_CHANGE, self.state)
            await self._notify(LifecycleEvent.DISCONNECTED, NORMAL_CLOSURE, "Client disconnect")

    async def close(self) -> None:
        """Disconnect and release listeners and queued messages."""
        await self.disconnect()
        for task in list(self._background_tasks):
            task.cancel()
        self._listeners.clear()
        self.lifecycle.clear()
        self._queue.clear()

    # ------------------------------------------------------------ internals

    def _start_attempt(self) -> None:
        self._attempt_id += 1
        attempt_id = self._attempt_id
        self._machine.start_connecting()
        logger.info("Connecting", client=self.name, url=self.url, attempt_id=attempt_id)
        self._attempt_task = self._spawn(self._run_attempt(attempt_id), f"roomwire-attempt-{attempt_id}")

    def _spawn(self, coro: Any, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Client background task failed",
                client=self.name,
                task=task.get_name(),
                error=str(exc),
                error_type=type(exc).__name__,
            )

    def _is_current(self, attempt_id: int) -> bool:
        return attempt_id == self._attempt_id and attempt_id != self._settled_attempt

    async def _run_attempt(self, attempt_id: int) -> None:
        await self._notify(LifecycleEvent.STATE_CHANGE, self.state)
        await self._notify(LifecycleEvent.CONNECTING, attempt_id)

        try:
            connection = await asyncio.wait_for(
                self._transport_factory.open(self.url), self.settings.connection_timeout
            )
        except TimeoutError:
            if self._is_current(attempt_id):
                await self._settle(
                    attempt_id,
                    error=ConnectionTimeoutError(
                        "Connection timeout", attempt_id=attempt_id, timeout=self.settings.connection_timeout
                    ),
                )
            return
        except TransportError as e:
            if self._is_current(attempt_id):
                await self._settle(attempt_id, error=e)
            return

        if not self._is_current(attempt_id):
            logger.debug("Discarding connection from superseded attempt", client=self.name, attempt_id=attempt_id)
            await self._close_quietly(connection, NORMAL_CLOSURE, "Superseded")
            return

        self._connection = connection
        await self._handle_open(attempt_id, connection)

        try:
            async for raw in connection:
                if not self._is_current(attempt_id):
                    break
                try:
                    await self._handle_message(raw)
                except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: one bad frame must not stop the reader
                    logger.error(
                        "Error handling inbound frame",
                        client=self.name,
                        attempt_id=attempt_id,
                        error=str(e),
                        error_type=type(e).__name__,
                        exc_info=True,
                    )
        except TransportError as e:
            if self._is_current(attempt_id) and self._connection is connection:
                await self._settle(attempt_id, error=e)
            return

        if self._is_current(attempt_id) and self._connection is connection:
            await self._settle(attempt_id, code=connection.close_code, reason=connection.close_reason)

    async def _handle_open(self, attempt_id: int, connection: TransportConnection) -> None:
        self._machine.open_succeeded()
        self._reconnection.reset()

        flushed = await self._queue.flush(connection)
        if not self._is_current(attempt_id):
            return
        self._ready = True
        self._start_keepalive(attempt_id, connection)

        for waiter in list(self._waiters):
            if not waiter.done():
                waiter.set_result(None)

        logger.info("Connected", client=self.name, attempt_id=attempt_id, flushed=flushed)
        await self._notify(LifecycleEvent.STATE_CHANGE, self.state)
        await self._notify(LifecycleEvent.CONNECTED)

    async def _handle_message(self, raw: str | bytes) -> None:
        frame = decode_frame(raw)

        if frame.type is FrameType.PONG:
            if self._keepalive is not None:
                self._keepalive.record_pong()
            return

        if frame.type is FrameType.PING:
            await self._send_control(Frame.pong())
            return

        if frame.type is FrameType.INVALID:
            logger.debug("Ignoring invalid frame", client=self.name)
            return

        envelope = frame.envelope
        if envelope is not None:
            await self._listeners.emit(envelope.event, envelope.data)
        else:
            await self._listeners.emit(frame.channel or RAW_MESSAGE_EVENT, frame.data)

    async def _send_control(self, frame: Frame) -> None:
        connection = self._connection
        if connection is None or not connection.is_open:
            return
        await connection.send(encode_frame(frame))

    def _start_keepalive(self, attempt_id: int, connection: TransportConnection) -> None:
        async def send_ping() -> None:
            await connection.send(encode_frame(Frame.ping()))

        async def on_dead() -> None:
            if not self._is_current(attempt_id):
                return
            self._spawn(self._close_quietly(connection, PONG_TIMEOUT, "Pong timeout"), "roomwire-pong-timeout-close")
            await self._settle(attempt_id, code=PONG_TIMEOUT, reason="Pong timeout")

        self._keepalive = KeepaliveController(
            self.settings.ping_interval,
            self.settings.pong_timeout,
            send_ping=send_ping,
            is_open=lambda: connection.is_open,
            on_dead=on_dead,
            foreground_signal=self._foreground_signal,
            clock=self._clock,
        )
        self._keepalive.start()

    def _stop_keepalive(self) -> None:
        if self._keepalive is not None:
            self._keepalive.stop()
            self._keepalive = None

    def _fail_waiters(self, error: RoomwireError) -> None:
        for waiter in list(self._waiters):
            if not waiter.done():
                waiter.set_exception(error)

    async def _settle(
        self,
        attempt_id: int,
        *,
        code: int | None = None,
        reason: str = "",
        error: RoomwireError | None = None,
    ) -> None:
        """
        Finish an attempt that closed or failed and decide what happens next.

        Notifications go out in the order state_change, close/error, then
        reconnecting when a retry was scheduled.
        """
        self._settled_attempt = attempt_id
        self._ready = False
        self._connection = None
        self._stop_keepalive()

        if error is None:
            self._fail_waiters(ConnectionLostError("Connection closed", attempt_id=attempt_id, code=code, reason=reason))
        else:
            self._fail_waiters(error)

        clean = error is None and is_clean_close(code)
        retry_delay: float | None = None
        if clean:
            self._machine.link_lost()
        elif self._reconnection.should_retry():
            retry_delay = self._reconnection.next_attempt()
            self._machine.begin_reconnect()
        elif self._reconnection.policy.enabled:
            self._machine.give_up()
        else:
            self._machine.link_lost()

        logger.info(
            "Connection ended",
            client=self.name,
            attempt_id=attempt_id,
            code=code,
            reason=reason,
            error=str(error) if error else None,
            next_state=self.state.value,
            retry_delay=retry_delay,
        )

        if retry_delay is not None:
            self._reconnect_task = self._spawn(
                self._reconnect_after(retry_delay, attempt_id), f"roomwire-reconnect-{attempt_id}"
            )

        await self._notify(LifecycleEvent.STATE_CHANGE, self.state)
        if error is None:
            await self._notify(LifecycleEvent.CLOSE, code, reason)
            await self._notify(LifecycleEvent.DISCONNECTED, code, reason)
        else:
            await self._notify(LifecycleEvent.ERROR, error)

        if retry_delay is not None:
            await self._notify(LifecycleEvent.RECONNECTING, self._reconnection.attempts, retry_delay)
        elif self.state is ConnectionState.ERROR:
            logger.error(
                "Reconnection attempts exhausted",
                client=self.name,
                attempts=self._reconnection.attempts,
            )

    async def _reconnect_after(self, delay: float, scheduled_by: int) -> None:
        await asyncio.sleep(delay)
        if scheduled_by != self._attempt_id or self.state is not ConnectionState.RECONNECTING:
            return
        self._reconnect_task = None
        self._start_attempt()

    async def _tear_down(self, error: ClientConnectionError, reason: str) -> bool:
        """
        Invalidate the current attempt, cancel timers and close the transport.

        Returns:
            True if the state machine moved to disconnected
        """
        self._attempt_id += 1
        self._settled_attempt = self._attempt_id

        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None

        attempt_task, self._attempt_task = self._attempt_task, None
        if attempt_task is not None and not attempt_task.done() and attempt_task is not asyncio.current_task():
            attempt_task.cancel()

        self._stop_keepalive()
        self._ready = False
        connection, self._connection = self._connection, None
        self._fail_waiters(error)

        changed = False
        if self.state is not ConnectionState.DISCONNECTED:
            self._machine.user_disconnect()
            changed = True

        if connection is not None:
            await self._close_quietly(connection, NORMAL_CLOSURE, reason)
        return changed

    async def _close_quietly(self, connection: TransportConnection, code: int, reason: str) -> None:
        try:
            await connection.close(code, reason)
        except TransportError as e:
            logger.debug("Error closing transport", client=self.name, error=str(e))

    async def _notify(self, event: LifecycleEvent, *args: Any) -> None:
        await self.lifecycle.emit(event.value, *args)
