"""
Socket.io-style emit API for room handlers.

SocketEmit is bound to the connection a handler is serving; RoomEmit is bound
to the whole runtime. Both wrap application events in an event envelope and
deliver them through the session registry.

Targets are explicit. SocketEmit.to() accepts "user:<id>" and
"channel:<name>"; a bare target is a channel name.
"""

from collections.abc import Callable
from typing import Any

from ..exceptions import TransportError
from ..protocol.codec import encode_frame
from ..protocol.frames import EventEnvelope, Frame
from ..structured_logging.enhanced_logging_config import get_logger
from .handle import ConnectionHandle
from .meta import ConnectionMeta
from .session_registry import BroadcastOptions, SessionRegistry

logger = get_logger(__name__)

USER_TARGET_PREFIX = "user:"
CHANNEL_TARGET_PREFIX = "channel:"


class EmitBuilder:
    """A resolved emit target; emit() returns the number of deliveries."""

    def __init__(self, deliver: Callable[[Any], int], description: str) -> None:
        self._deliver = deliver
        self.description = description

    def emit(self, event: str, data: Any = None) -> int:
        return self._deliver(EventEnvelope(event, data).to_payload())

    def __repr__(self) -> str:
        return f"<EmitBuilder {self.description}>"


class SocketEmit:
    """Emit API bound to one connection."""

    def __init__(self, registry: SessionRegistry, handle: ConnectionHandle, meta: ConnectionMeta) -> None:
        self._registry = registry
        self._handle = handle
        self._meta = meta

    @property
    def default_channel(self) -> str:
        return self._meta.default_channel

    def emit(self, event: str, data: Any = None) -> bool:
        """
        Send an event to this connection only, on its default channel.

        Returns:
            True if the frame was handed to the transport
        """
        if not self._handle.is_open:
            logger.warning("Cannot emit to closed socket", handle_id=self._handle.handle_id, event_name=event)
            return False
        encoded = encode_frame(Frame.app_event(self.default_channel, event, data))
        try:
            self._handle.send(encoded)
        except TransportError as e:
            logger.error("Failed to emit to socket", handle_id=self._handle.handle_id, event_name=event, error=str(e))
            return False
        return True

    def to_channel(self, channel: str) -> EmitBuilder:
        """Target every session on a channel except this connection."""
        options = BroadcastOptions(exclude=self._handle)
        return EmitBuilder(
            lambda payload: self._registry.broadcast(channel, payload, options),
            f"channel {channel!r} except {self._handle.handle_id}",
        )

    def to_user(self, user_id: str, channel: str | None = None) -> EmitBuilder:
        """Target every session of a user subscribed to channel (default: this connection's default channel)."""
        target_channel = channel or self.default_channel
        return EmitBuilder(
            lambda payload: self._registry.send_to_user(user_id, target_channel, payload),
            f"user {user_id!r} on {target_channel!r}",
        )

    def to(self, target: str) -> EmitBuilder:
        """Resolve "user:<id>", "channel:<name>" or a bare channel name."""
        if target.startswith(USER_TARGET_PREFIX):
            return self.to_user(target[len(USER_TARGET_PREFIX) :])
        if target.startswith(CHANNEL_TARGET_PREFIX):
            return self.to_channel(target[len(CHANNEL_TARGET_PREFIX) :])
        return self.to_channel(target)


class RoomEmit:
    """Emit API bound to a whole runtime."""

    def __init__(self, registry: SessionRegistry, default_channel: str) -> None:
        self._registry = registry
        self.default_channel = default_channel

    def emit(self, event: str, data: Any = None) -> int:
        """Broadcast an event on the default channel."""
        return self.to(self.default_channel).emit(event, data)

    def to(self, channel: str, *, user_ids: list[str] | None = None, client_ids: list[str] | None = None) -> EmitBuilder:
        options = BroadcastOptions(user_ids=user_ids, client_ids=client_ids)
        return EmitBuilder(lambda payload: self._registry.broadcast(channel, payload, options), f"channel {channel!r}")

    def to_user(self, user_id: str, channel: str | None = None) -> EmitBuilder:
        target_channel = channel or self.default_channel
        return EmitBuilder(
            lambda payload: self._registry.send_to_user(user_id, target_channel, payload),
            f"user {user_id!r} on {target_channel!r}",
        )
