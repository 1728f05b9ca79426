"""
Foreground/background signals for the keepalive controller.

Hosts that can suspend the client's timers (a backgrounded mobile app, a laptop
going to sleep) report foreground transitions through a ForegroundSignal so the
keepalive can resynchronize instead of declaring a healthy link dead.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

ForegroundCallback = Callable[[bool], None]


class ForegroundSignal(ABC):
    """Source of foreground/background transitions."""

    @abstractmethod
    def subscribe(self, callback: ForegroundCallback) -> Callable[[], None]:
        """
        Register a callback invoked with True on entering the foreground and
        False on leaving it.

        Returns:
            A function that removes the subscription
        """


class NullForegroundSignal(ForegroundSignal):
    """Signal for environments without a foreground concept; never fires."""

    def subscribe(self, callback: ForegroundCallback) -> Callable[[], None]:
        return lambda: None


class ManualForegroundSignal(ForegroundSignal):
    """Foreground signal driven explicitly by the host application."""

    def __init__(self, foreground: bool = True) -> None:
        self.foreground = foreground
        self._callbacks: list[ForegroundCallback] = []

    def subscribe(self, callback: ForegroundCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def set_foreground(self, foreground: bool) -> None:
        """Report the current visibility; callbacks fire only on a change."""
        if foreground == self.foreground:
            return
        self.foreground = foreground
        logger.debug("Foreground state changed", foreground=foreground)
        for callback in list(self._callbacks):
            try:
                callback(foreground)
            except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: a failing subscriber must not block the others
                logger.error("Foreground callback failed", error=str(e), error_type=type(e).__name__)
