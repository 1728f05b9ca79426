"""
Ping/pong keepalive for the realtime client.

Every ping_interval seconds the controller either sends a ping or, if no pong
has arrived within pong_timeout + ping_interval, declares the link dead. The
grace window spans one full missed cycle on purpose. When the host reports a
return to the foreground the controller pings immediately and restarts its
timer, since timers may have been frozen while backgrounded.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

from ..exceptions import TransportError
from ..structured_logging.enhanced_logging_config import get_logger
from .foreground import ForegroundSignal, NullForegroundSignal

logger = get_logger(__name__)


class KeepaliveController:
    """Drives ping frames and detects dead links for one connection."""

    def __init__(
        self,
        ping_interval: float,
        pong_timeout: float,
        *,
        send_ping: Callable[[], Awaitable[None]],
        is_open: Callable[[], bool],
        on_dead: Callable[[], Awaitable[None]],
        foreground_signal: ForegroundSignal | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            ping_interval: Seconds between checks; 0 disables the controller
            pong_timeout: Seconds tolerated without a pong on top of ping_interval
            send_ping: Coroutine function sending one ping frame
            is_open: Reports whether the transport is still open
            on_dead: Coroutine function invoked once when the link is declared dead
            foreground_signal: Optional source of foreground transitions
            clock: Monotonic time source
        """
        self.ping_interval = ping_interval
        self.pong_timeout = pong_timeout
        self._send_ping = send_ping
        self._is_open = is_open
        self._on_dead = on_dead
        self._foreground_signal = foreground_signal or NullForegroundSignal()
        self._clock = clock

        self.last_pong = 0.0
        self._task: asyncio.Task | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._resync_task: asyncio.Task | None = None

    @property
    def enabled(self) -> bool:
        return self.ping_interval > 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def grace_window(self) -> float:
        return self.pong_timeout + self.ping_interval

    def start(self) -> None:
        """Start pinging. No-op when disabled or already running."""
        if not self.enabled or self.running:
            return
        self.last_pong = self._clock()
        self._task = asyncio.create_task(self._run(), name="roomwire-keepalive")
        if self._unsubscribe is None:
            self._unsubscribe = self._foreground_signal.subscribe(self._on_foreground_change)
        logger.debug("Keepalive started", ping_interval=self.ping_interval, pong_timeout=self.pong_timeout)

    def stop(self) -> None:
        """Stop pinging and detach from the foreground signal."""
        task, self._task = self._task, None
        # on_dead runs inside the loop task and may call stop(); never cancel the caller
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if self._resync_task is not None and not self._resync_task.done():
            self._resync_task.cancel()
        self._resync_task = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if task is not None:
            logger.debug("Keepalive stopped")

    def record_pong(self) -> None:
        self.last_pong = self._clock()

    async def tick(self) -> bool:
        """
        Run one keepalive check.

        Returns:
            False if the link was declared dead or is closed, True otherwise
        """
        if not self._is_open():
            logger.debug("Transport not open, stopping keepalive")
            self.stop()
            return False

        elapsed = self._clock() - self.last_pong
        if elapsed >= self.grace_window:
            logger.warning("Pong timeout exceeded, declaring link dead", since_last_pong=elapsed)
            self.stop()
            await self._on_dead()
            return False

        await self._ping()
        return True

    async def resync(self) -> None:
        """Ping immediately and restart the timer with a fresh pong baseline."""
        if not self._is_open():
            logger.debug("Transport not open, skipping keepalive resync")
            return

        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

        await self._ping()
        self.last_pong = self._clock()
        self._task = asyncio.create_task(self._run(), name="roomwire-keepalive")
        logger.debug("Keepalive resynchronized")

    async def _ping(self) -> None:
        try:
            await self._send_ping()
        except TransportError as e:
            logger.error("Failed to send ping", error=str(e))

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.ping_interval)
            if not await self.tick():
                return

    def _on_foreground_change(self, foreground: bool) -> None:
        if not foreground or self._unsubscribe is None:
            return
        logger.debug("Returned to foreground, resyncing keepalive")
        self._resync_task = asyncio.get_running_loop().create_task(self.resync())
