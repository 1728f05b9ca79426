"""
JSON codec for roomwire frames.

encode_frame produces WebSocket text frames. decode_frame never raises: any
input it cannot interpret becomes Frame.invalid(), logged at debug level.
"""

import json
import uuid
from datetime import date, datetime
from typing import Any

from ..exceptions import FrameEncodeError
from ..structured_logging.enhanced_logging_config import get_logger
from .frames import WIRE_FRAME_TYPES, Frame, FrameType

logger = get_logger(__name__)

PROTOCOL_VERSION = "1.0.0"
# Handshake header a client uses to announce the PROTOCOL_VERSION it speaks
PROTOCOL_HEADER = "X-Roomwire-Protocol"


class FrameJSONEncoder(json.JSONEncoder):
    """JSON encoder that also handles UUID and datetime payload values."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, uuid.UUID):
            return str(obj)
        if isinstance(obj, datetime | date):
            return obj.isoformat()
        return super().default(obj)


def encode_frame(frame: Frame) -> str:
    """
    Encode a frame to JSON text for transmission.

    Args:
        frame: The frame to encode

    Returns:
        JSON string representation of the frame

    Raises:
        FrameEncodeError: If the frame is invalid or its payload is not serializable
    """
    try:
        return json.dumps(frame.to_wire(), cls=FrameJSONEncoder, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise FrameEncodeError(f"Failed to encode frame: {e}", frame_type=frame.type.value) from e


def decode_frame(raw: Any) -> Frame:
    """
    Decode raw transport data into a frame.

    Args:
        raw: Text or binary message received from the transport

    Returns:
        The decoded frame, or Frame.invalid() if the input is not a valid frame
    """
    try:
        if isinstance(raw, bytes | bytearray | memoryview):
            raw = bytes(raw).decode("utf-8")
        if not isinstance(raw, str):
            logger.debug("Frame decode skipped non-text input", input_type=type(raw).__name__)
            return Frame.invalid()
        parsed = json.loads(raw)
    except (ValueError, RecursionError) as e:
        # ValueError covers JSONDecodeError, UnicodeDecodeError and oversized integer literals
        logger.debug("Failed to decode frame", error=str(e))
        return Frame.invalid()

    if not isinstance(parsed, dict):
        logger.debug("Frame is not a JSON object", parsed_type=type(parsed).__name__)
        return Frame.invalid()

    frame_type = parsed.get("type")
    if not isinstance(frame_type, str) or frame_type not in WIRE_FRAME_TYPES:
        logger.debug("Frame has unknown or missing type", frame_type=str(frame_type))
        return Frame.invalid()

    if frame_type != FrameType.EVENT.value:
        # Control frames: any extra fields are dropped
        return Frame(FrameType(frame_type))

    channel = parsed.get("channel")
    if channel is not None and not isinstance(channel, str):
        logger.debug("Event frame has non-string channel", channel_type=type(channel).__name__)
        return Frame.invalid()

    return Frame.event(channel, parsed.get("data"))


def is_compatible_protocol(version: str | None) -> bool:
    """
    Check a peer's announced protocol version against PROTOCOL_VERSION.

    Versions are compatible when their major components match. A peer that
    announces nothing is assumed compatible.
    """
    if version is None:
        return True
    return version.strip().split(".")[0] == PROTOCOL_VERSION.split(".")[0]
