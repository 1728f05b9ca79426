"""
Declarative room definitions.

A RoomDefinition is a plain value: a name, a WebSocket path, a meta extractor,
optional lifecycle hook slots and a table of event handlers. It holds no
runtime state, so the handler table can be replayed into a fresh runtime at
startup and after every resume.

Hooks and handlers may be plain functions or coroutine functions:

- extract_meta(request) -> ConnectionMeta | dict
- on_connect(ctx), on_disconnect(ctx)
- on_message(ctx, frame), called when no event handler matches
- on_error(error, ctx)
- on_restore(runtime), called after a resume recovered at least one session
- on_restore_error(error, runtime), called when some sessions could not be restored
- handlers registered with room.on(event): handler(ctx, data)
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ..structured_logging.enhanced_logging_config import get_logger
from .meta import ConnectionMeta, default_extract_meta

logger = get_logger(__name__)

Hook = Callable[..., Any]


@dataclass
class RoomDefinition:
    """Declarative description of a room."""

    name: str = "room"
    websocket_path: str = "/ws"
    meta_model: type[ConnectionMeta] = ConnectionMeta
    extract_meta: Hook = default_extract_meta
    on_connect: Hook | None = None
    on_disconnect: Hook | None = None
    on_message: Hook | None = None
    on_error: Hook | None = None
    on_restore: Hook | None = None
    on_restore_error: Hook | None = None
    handlers: dict[str, list[Hook]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.websocket_path.startswith("/"):
            raise ValueError("websocket_path must start with '/'")

    def on(self, event: str, handler: Hook | None = None) -> Any:
        """
        Add an event handler to the room's table.

        Usable as ``room.on("chat", fn)`` or as the decorator ``@room.on("chat")``.
        """
        if handler is None:
            return lambda fn: self.on(event, fn)
        handlers = self.handlers.setdefault(event, [])
        if handler not in handlers:
            handlers.append(handler)
        return handler

    def off(self, event: str, handler: Hook | None = None) -> None:
        """Remove one handler, or all handlers for the event when handler is None."""
        if handler is None:
            self.handlers.pop(event, None)
            return
        handlers = self.handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self.handlers.pop(event, None)


def define_room(
    name: str = "room",
    websocket_path: str = "/ws",
    *,
    meta_model: type[ConnectionMeta] = ConnectionMeta,
    extract_meta: Hook | None = None,
    **hooks: Hook,
) -> RoomDefinition:
    """
    Build a RoomDefinition, falling back to the default meta extractor.

    Raises:
        TypeError: If an unknown hook name is passed
    """
    room = RoomDefinition(
        name=name,
        websocket_path=websocket_path,
        meta_model=meta_model,
        extract_meta=extract_meta or default_extract_meta,
        **hooks,
    )
    logger.debug("Room defined", room=name, websocket_path=websocket_path, hooks=sorted(hooks))
    return room
