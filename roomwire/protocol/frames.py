"""
Frame types for the roomwire wire protocol.

A Frame is one wire-level unit. Only "event" frames carry a channel and a
payload; "ping" and "pong" are bare control frames. "invalid" never crosses the
wire: it is what the decoder returns for anything it cannot make sense of.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class FrameType(str, Enum):
    """Wire-level frame types."""

    EVENT = "event"
    PING = "ping"
    PONG = "pong"
    INVALID = "invalid"


WIRE_FRAME_TYPES = frozenset({FrameType.EVENT.value, FrameType.PING.value, FrameType.PONG.value})


@dataclass(frozen=True)
class EventEnvelope:
    """
    Application event carried inside an event frame's data.

    Keeps the application event name apart from the wire-level frame type.
    """

    event: str
    data: Any = None

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON-ready representation placed in Frame.data."""
        return {"event": self.event, "data": self.data}

    @classmethod
    def from_payload(cls, payload: Any) -> "EventEnvelope | None":
        """
        Recognize an envelope in a frame payload.

        Returns None when the payload is not a mapping with a string "event"
        key and no keys besides "event" and "data".
        """
        if not isinstance(payload, dict):
            return None
        event = payload.get("event")
        if not isinstance(event, str) or not event:
            return None
        if set(payload) - {"event", "data"}:
            return None
        return cls(event=event, data=payload.get("data"))


@dataclass(frozen=True)
class Frame:
    """One wire-level protocol unit."""

    type: FrameType
    channel: str | None = None
    data: Any = None

    def __post_init__(self) -> None:
        if self.type is not FrameType.EVENT and (self.channel is not None or self.data is not None):
            raise ValueError(f"{self.type.value} frames carry no channel or data")

    @classmethod
    def event(cls, channel: str | None, data: Any = None) -> "Frame":
        """Build an event frame with a raw payload."""
        return cls(FrameType.EVENT, channel=channel, data=data)

    @classmethod
    def app_event(cls, channel: str | None, event: str, data: Any = None) -> "Frame":
        """Build an event frame wrapping an application event envelope."""
        return cls(FrameType.EVENT, channel=channel, data=EventEnvelope(event, data).to_payload())

    @classmethod
    def ping(cls) -> "Frame":
        return cls(FrameType.PING)

    @classmethod
    def pong(cls) -> "Frame":
        return cls(FrameType.PONG)

    @classmethod
    def invalid(cls) -> "Frame":
        return cls(FrameType.INVALID)

    @property
    def is_valid(self) -> bool:
        return self.type is not FrameType.INVALID

    @property
    def envelope(self) -> EventEnvelope | None:
        """The application event envelope, if this is an event frame carrying one."""
        if self.type is not FrameType.EVENT:
            return None
        return EventEnvelope.from_payload(self.data)

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON-ready representation of this frame."""
        if self.type is FrameType.INVALID:
            raise ValueError("invalid frames are never sent")
        wire: dict[str, Any] = {"type": self.type.value}
        if self.channel is not None:
            wire["channel"] = self.channel
        if self.data is not None:
            wire["data"] = self.data
        return wire
