"""
Wire protocol for roomwire.

Frames are JSON objects of the form {"type", "channel"?, "data"?}. Application
events travel inside "event" frames as an envelope {"event": name, "data": payload}.
"""

from .close_codes import CLEAN_CLOSE_CODES, GOING_AWAY, INTERNAL_ERROR, NORMAL_CLOSURE, PONG_TIMEOUT, is_clean_close
from .codec import PROTOCOL_HEADER, PROTOCOL_VERSION, decode_frame, encode_frame, is_compatible_protocol
from .frames import EventEnvelope, Frame, FrameType

__all__ = [
    "CLEAN_CLOSE_CODES",
    "GOING_AWAY",
    "INTERNAL_ERROR",
    "NORMAL_CLOSURE",
    "PONG_TIMEOUT",
    "PROTOCOL_HEADER",
    "PROTOCOL_VERSION",
    "EventEnvelope",
    "Frame",
    "FrameType",
    "decode_frame",
    "encode_frame",
    "is_clean_close",
    "is_compatible_protocol",
]
