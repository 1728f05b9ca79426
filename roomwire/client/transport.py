"""
Client transport abstraction.

RealtimeClient talks to the network only through TransportFactory and
TransportConnection, so tests and alternative transports can replace the
websockets-based default.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI
from websockets.protocol import State

from ..exceptions import TransportClosedError, TransportError
from ..protocol.codec import PROTOCOL_HEADER, PROTOCOL_VERSION
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class TransportConnection(ABC):
    """One open bidirectional message stream."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while messages can be sent."""

    @property
    @abstractmethod
    def close_code(self) -> int | None:
        """Close code once the stream has ended, else None."""

    @property
    @abstractmethod
    def close_reason(self) -> str:
        """Close reason once the stream has ended."""

    @abstractmethod
    async def send(self, message: str) -> None:
        """
        Send one text message.

        Raises:
            TransportError: If the message could not be sent
        """

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the stream with the given code."""

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[str | bytes]:
        """Iterate inbound messages until the stream ends."""


class TransportFactory(ABC):
    """Opens transport connections."""

    @abstractmethod
    async def open(self, url: str) -> TransportConnection:
        """
        Open a connection to url.

        Raises:
            TransportError: If the connection could not be established
        """


class WebsocketsConnection(TransportConnection):
    """TransportConnection backed by a websockets client connection."""

    def __init__(self, websocket: ClientConnection) -> None:
        self._websocket = websocket

    @property
    def is_open(self) -> bool:
        return self._websocket.state is State.OPEN

    @property
    def close_code(self) -> int | None:
        return self._websocket.close_code

    @property
    def close_reason(self) -> str:
        return self._websocket.close_reason or ""

    async def send(self, message: str) -> None:
        try:
            await self._websocket.send(message)
        except ConnectionClosed as e:
            raise TransportClosedError(
                "WebSocket closed while sending",
                transport="websockets",
                code=e.rcvd.code if e.rcvd else None,
                reason=e.rcvd.reason if e.rcvd else "",
            ) from e

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self._websocket.close(code, reason)

    async def __aiter__(self) -> AsyncIterator[str | bytes]:
        try:
            async for message in self._websocket:
                yield message
        except ConnectionClosed:
            # close_code/close_reason carry the outcome
            return


class WebsocketsTransportFactory(TransportFactory):
    """
    Opens connections with the websockets library.

    The library's own ping/pong keepalive is disabled; the client runs the
    protocol-level keepalive instead. Every handshake announces PROTOCOL_VERSION
    in the PROTOCOL_HEADER request header.
    """

    def __init__(self, **connect_kwargs) -> None:
        headers = {PROTOCOL_HEADER: PROTOCOL_VERSION, **dict(connect_kwargs.pop("additional_headers", None) or {})}
        self._connect_kwargs = {"ping_interval": None, "additional_headers": headers, **connect_kwargs}

    async def open(self, url: str) -> TransportConnection:
        try:
            websocket = await connect(url, **self._connect_kwargs)
        except (InvalidURI, InvalidHandshake, OSError) as e:
            raise TransportError(f"Failed to open WebSocket: {e}", transport="websockets") from e
        logger.debug("WebSocket opened", url=url)
        return WebsocketsConnection(websocket)
