"""
Server side of roomwire: rooms, sessions, broadcast and suspend/resume.
"""

from .emit import EmitBuilder, RoomEmit, SocketEmit
from .handle import ConnectionHandle, InMemorySessionHost, SessionHost
from .meta import DEFAULT_CHANNEL, ConnectionMeta, ConnectRequest, default_extract_meta
from .remote_emit import (
    BroadcastCommand,
    ConnectedUserIdsQuery,
    RemoteEmit,
    RemoteResult,
    SendToUserCommand,
    SessionCountQuery,
    SweepStaleCommand,
    execute_remote_command,
    parse_remote_command,
)
from .room import RoomDefinition, define_room
from .room_runtime import MessageContext, RoomContext, RoomRuntime
from .session_registry import BroadcastOptions, Session, SessionRegistry
from .session_restore import RestoreReport, load_attachment, restore_sessions, store_attachment

__all__ = [
    "DEFAULT_CHANNEL",
    "BroadcastCommand",
    "BroadcastOptions",
    "ConnectRequest",
    "ConnectedUserIdsQuery",
    "ConnectionHandle",
    "ConnectionMeta",
    "EmitBuilder",
    "InMemorySessionHost",
    "MessageContext",
    "RemoteEmit",
    "RemoteResult",
    "RestoreReport",
    "RoomContext",
    "RoomDefinition",
    "RoomEmit",
    "RoomRuntime",
    "SendToUserCommand",
    "Session",
    "SessionCountQuery",
    "SessionHost",
    "SessionRegistry",
    "SocketEmit",
    "SweepStaleCommand",
    "default_extract_meta",
    "define_room",
    "execute_remote_command",
    "load_attachment",
    "parse_remote_command",
    "restore_sessions",
    "store_attachment",
]
