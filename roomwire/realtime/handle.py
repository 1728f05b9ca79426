"""
Host-side connection handles.

A ConnectionHandle is the runtime's view of one live transport connection as
owned by the host process. Its send() is synchronous and non-blocking, so
registry operations never interleave within one process. Each handle can carry
an attachment, a small JSON-ready snapshot that survives the host suspending and
resuming the process.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class ConnectionHandle(ABC):
    """One live connection owned by the host."""

    @property
    @abstractmethod
    def handle_id(self) -> str:
        """Stable identifier of this handle."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while frames can be sent."""

    @abstractmethod
    def send(self, message: str) -> None:
        """
        Queue one text frame for delivery without blocking.

        Raises:
            TransportError: If the handle can no longer send
        """

    @abstractmethod
    def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the connection with the given code."""

    @abstractmethod
    def serialize_attachment(self, value: dict[str, Any]) -> None:
        """Persist a JSON-ready value alongside the connection."""

    @abstractmethod
    def deserialize_attachment(self) -> Any:
        """Return the persisted value, or None if nothing was stored."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.handle_id} open={self.is_open}>"


class SessionHost(ABC):
    """The host process that owns handles and can enumerate them after a resume."""

    @abstractmethod
    def get_open_handles(self) -> Iterable[ConnectionHandle]:
        """Every handle the host still considers open."""


class InMemorySessionHost(SessionHost):
    """Host that tracks handles in a dictionary, keyed by handle id."""

    def __init__(self) -> None:
        self._handles: dict[str, ConnectionHandle] = {}

    def add(self, handle: ConnectionHandle) -> None:
        self._handles[handle.handle_id] = handle

    def remove(self, handle: ConnectionHandle) -> None:
        self._handles.pop(handle.handle_id, None)

    def get_open_handles(self) -> list[ConnectionHandle]:
        return [handle for handle in self._handles.values() if handle.is_open]

    def __len__(self) -> int:
        return len(self._handles)
