"""
Per-process room runtime.

RoomRuntime binds a RoomDefinition to one process. The host drives it through
four upcalls:

- on_connect(handle, request): a connection was accepted
- on_message(handle, raw): a frame arrived on a connection
- on_disconnect(handle): a connection closed
- resume(): the process started or woke from suspension

Sessions are registered only after the room's on_connect hook succeeds. Any
failure while connecting is reported to on_error and the handle is closed
with 1011; nothing is registered. Channel joins and meta updates made by the
on_connect hook apply to the pending meta and are stored before registration.

A runtime built without a host owns an InMemorySessionHost and tracks admitted
handles in it, so resume() restores them. A runtime given a host leaves
tracking to that host.
"""

import inspect
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ValidationError

from ..config import get_config
from ..config.models import RoomSettings
from ..events.listener_registry import WILDCARD, ListenerRegistry
from ..exceptions import ErrorContext, MetaValidationError, TransportError
from ..protocol.close_codes import INTERNAL_ERROR
from ..protocol.codec import PROTOCOL_HEADER, PROTOCOL_VERSION, decode_frame, encode_frame, is_compatible_protocol
from ..protocol.frames import Frame, FrameType
from ..structured_logging.enhanced_logging_config import get_logger, log_exception_once
from ..structured_logging.logging_context import connection_log_context
from .emit import RoomEmit, SocketEmit
from .handle import ConnectionHandle, InMemorySessionHost, SessionHost
from .meta import ConnectionMeta, ConnectRequest, placeholder_meta
from .room import Hook, RoomDefinition
from .session_registry import BroadcastOptions, Session, SessionRegistry
from .session_restore import RestoreReport, restore_sessions, store_attachment

logger = get_logger(__name__)


@dataclass
class RoomContext:
    """Context passed to lifecycle hooks."""

    runtime: "RoomRuntime"
    handle: ConnectionHandle
    meta: ConnectionMeta
    emit: SocketEmit

    def join(self, channel: str) -> bool:
        """Subscribe this connection to a channel."""
        return self.runtime.join_channel(self.handle, channel)

    def leave(self, channel: str) -> bool:
        """Unsubscribe this connection from a channel."""
        return self.runtime.leave_channel(self.handle, channel)


@dataclass
class MessageContext(RoomContext):
    """Context passed to message hooks and event handlers."""

    frame: Frame = field(default_factory=Frame.invalid)


async def _call_hook(hook: Hook, *args: Any) -> Any:
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class RoomRuntime:
    """Live state and upcall handling for one room in one process."""

    def __init__(
        self,
        room: RoomDefinition,
        host: SessionHost | None = None,
        settings: RoomSettings | None = None,
    ) -> None:
        self.room = room
        self._owned_host = InMemorySessionHost() if host is None else None
        self.host: SessionHost = host if host is not None else self._owned_host
        self.settings = settings or get_config().room
        self.registry = SessionRegistry(room.name)
        self.handlers = ListenerRegistry(f"{room.name}:handlers")
        self.handlers.rebuild(room.handlers)
        self.emit = RoomEmit(self.registry, self.settings.default_channel)
        # Meta of connections whose on_connect hook is still running
        self._pending: dict[str, ConnectionMeta] = {}

    @property
    def name(self) -> str:
        return self.room.name

    # ------------------------------------------------------------ upcalls

    async def resume(self) -> RestoreReport:
        """
        Rebuild handlers and sessions after a start or resume.

        on_restore runs only if at least one session was recovered;
        on_restore_error runs afterwards if any handle failed.
        """
        self.handlers.rebuild(self.room.handlers)

        try:
            report = restore_sessions(self.host, self.registry, self.room.meta_model)
        except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: host enumeration failures are reported through on_restore_error
            logger.error("Session restore failed", room=self.name, error=str(e), error_type=type(e).__name__)
            report = RestoreReport(failures=[("*", e)])

        if report.restored_count > 0 and self.room.on_restore is not None:
            try:
                await _call_hook(self.room.on_restore, self)
            except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: hook failures must not abort the resume
                logger.error("Error in on_restore hook", room=self.name, error=str(e), exc_info=True)

        restore_error = report.error()
        if restore_error is not None and self.room.on_restore_error is not None:
            try:
                await _call_hook(self.room.on_restore_error, restore_error, self)
            except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: hook failures must not abort the resume
                logger.error("Error in on_restore_error hook", room=self.name, error=str(e), exc_info=True)

        return report

    async def on_connect(self, handle: ConnectionHandle, request: ConnectRequest) -> Session | None:
        """
        Admit a new connection.

        Returns:
            The registered session, or None if the connection was rejected
        """
        with connection_log_context(handle_id=handle.handle_id, room=self.name):
            client_protocol = request.header(PROTOCOL_HEADER)
            if not is_compatible_protocol(client_protocol):
                logger.warning(
                    "Client announced an incompatible protocol version",
                    room=self.name,
                    client_protocol=client_protocol,
                    server_protocol=PROTOCOL_VERSION,
                )

            meta: ConnectionMeta | None = None
            try:
                meta = await self._extract_meta(handle, request)
                store_attachment(handle, meta)
                if self.room.on_connect is not None:
                    self._pending[handle.handle_id] = meta
                    try:
                        await _call_hook(self.room.on_connect, self._context(handle, meta))
                    finally:
                        meta = self._pending.pop(handle.handle_id)
                session = self.registry.register(handle, meta)
                owned_host = self._tracking_host()
                if owned_host is not None:
                    owned_host.add(handle)
            except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: any connect failure rejects the connection
                log_exception_once(
                    logger, "error", "Connection rejected", exc=e, room=self.name, meta_extracted=meta is not None
                )
                await self._report_error(e, handle, meta if meta is not None else placeholder_meta())
                handle.close(INTERNAL_ERROR, "Internal server error")
                return None

            logger.info(
                "Connection admitted",
                room=self.name,
                user_id=meta.user_id,
                client_id=meta.client_id,
                channels=meta.channels,
                session_count=self.registry.session_count(),
            )
            return session

    async def on_message(self, handle: ConnectionHandle, raw: str | bytes) -> None:
        """Handle one inbound frame."""
        frame = decode_frame(raw)

        if frame.type is FrameType.PING:
            self._send_pong(handle)
            return

        if frame.type is FrameType.INVALID:
            logger.debug("Invalid or unparseable frame, skipping", room=self.name, handle_id=handle.handle_id)
            return

        if frame.type is FrameType.PONG:
            return

        session = self.registry.get(handle)
        if session is None:
            logger.warning("Message from unknown session", room=self.name, handle_id=handle.handle_id)
            return

        with connection_log_context(
            handle_id=handle.handle_id, user_id=session.meta.user_id, client_id=session.meta.client_id
        ):
            ctx = MessageContext(
                runtime=self,
                handle=handle,
                meta=session.meta,
                emit=SocketEmit(self.registry, handle, session.meta),
                frame=frame,
            )
            try:
                envelope = frame.envelope
                if envelope is not None and (
                    self.handlers.has_handlers(envelope.event) or self.handlers.has_handlers(WILDCARD)
                ):
                    await self.handlers.emit(envelope.event, ctx, envelope.data)
                elif self.room.on_message is not None:
                    await _call_hook(self.room.on_message, ctx, frame)
                else:
                    logger.debug(
                        "No handler for message",
                        room=self.name,
                        event_name=envelope.event if envelope else None,
                        channel=frame.channel,
                    )
            except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: message hook failures go to on_error, never to the host
                logger.error("Error handling message", room=self.name, error=str(e), error_type=type(e).__name__)
                await self._report_error(e, handle, session.meta)

    async def on_disconnect(self, handle: ConnectionHandle) -> Session | None:
        """
        Forget a closed connection, then run the on_disconnect hook.

        Returns:
            The removed session, or None if the handle was not registered
        """
        owned_host = self._tracking_host()
        if owned_host is not None:
            owned_host.remove(handle)
        session = self.registry.unregister(handle)
        if session is None:
            return None

        logger.info(
            "Connection closed",
            room=self.name,
            handle_id=handle.handle_id,
            user_id=session.meta.user_id,
            session_count=self.registry.session_count(),
        )
        if self.room.on_disconnect is not None:
            try:
                await _call_hook(self.room.on_disconnect, self._context(handle, session.meta))
            except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: the session is already gone; the hook failure is only logged
                logger.error("Error in on_disconnect hook", room=self.name, error=str(e), exc_info=True)
        return session

    # ------------------------------------------------------- session state

    def join_channel(self, handle: ConnectionHandle, channel: str) -> bool:
        """
        Subscribe a live or connecting session to a channel and persist the change.

        Returns:
            True if the channel was added, False if already subscribed or unknown session
        """
        meta = self._current_meta(handle)
        if meta is None or meta.is_subscribed(channel):
            return False
        self._replace_meta(handle, self._validated(meta, channels=[*meta.channels, channel]))
        logger.debug("Channel joined", room=self.name, handle_id=handle.handle_id, channel=channel)
        return True

    def leave_channel(self, handle: ConnectionHandle, channel: str) -> bool:
        """
        Unsubscribe a live or connecting session from a channel and persist the change.

        Returns:
            True if the channel was removed
        """
        meta = self._current_meta(handle)
        if meta is None or not meta.is_subscribed(channel):
            return False
        self._replace_meta(handle, self._validated(meta, channels=[c for c in meta.channels if c != channel]))
        logger.debug("Channel left", room=self.name, handle_id=handle.handle_id, channel=channel)
        return True

    def update_meta(self, handle: ConnectionHandle, **changes: Any) -> ConnectionMeta:
        """
        Apply changes to a session's meta, revalidate and persist it.

        Raises:
            KeyError: If the handle has no live or connecting session
            MetaValidationError: If the changed meta is invalid
        """
        meta = self._current_meta(handle)
        if meta is None:
            raise KeyError(handle.handle_id)
        meta = self._validated(meta, **changes)
        self._replace_meta(handle, meta)
        return meta

    # ------------------------------------------------------------ fan-out

    def broadcast(self, channel: str, payload: Any, options: BroadcastOptions | None = None) -> int:
        return self.registry.broadcast(channel, payload, options)

    def send_to_user(self, user_id: str, channel: str, payload: Any) -> int:
        return self.registry.send_to_user(user_id, channel, payload)

    def sweep_stale(self) -> int:
        return self.registry.sweep_stale()

    def session_count(self) -> int:
        return self.registry.session_count()

    def connected_user_ids(self) -> list[str]:
        return self.registry.connected_user_ids()

    def user_handles(self, user_id: str) -> list[ConnectionHandle]:
        return self.registry.user_handles(user_id)

    # ---------------------------------------------------------- internals

    async def _extract_meta(self, handle: ConnectionHandle, request: ConnectRequest) -> ConnectionMeta:
        raw = await _call_hook(self.room.extract_meta, request)
        if isinstance(raw, self.room.meta_model):
            return raw
        if isinstance(raw, BaseModel):
            raw = raw.model_dump()
        try:
            return self.room.meta_model.model_validate(raw)
        except ValidationError as e:
            raise MetaValidationError(
                "Connection meta failed validation",
                ErrorContext(handle_id=handle.handle_id, room=self.name),
                field=".".join(str(part) for part in e.errors()[0]["loc"]) if e.errors() else None,
            ) from e

    def _validated(self, meta: ConnectionMeta, **changes: Any) -> ConnectionMeta:
        try:
            return type(meta).model_validate({**meta.model_dump(), **changes})
        except ValidationError as e:
            raise MetaValidationError(
                "Connection meta update failed validation",
                ErrorContext(user_id=meta.user_id, client_id=meta.client_id, room=self.name),
            ) from e

    def _tracking_host(self) -> InMemorySessionHost | None:
        """The host this runtime created, unless a router has since rebound it."""
        return self._owned_host if self.host is self._owned_host else None

    def _current_meta(self, handle: ConnectionHandle) -> ConnectionMeta | None:
        session = self.registry.get(handle)
        if session is not None:
            return session.meta
        return self._pending.get(handle.handle_id)

    def _replace_meta(self, handle: ConnectionHandle, meta: ConnectionMeta) -> None:
        session = self.registry.get(handle)
        if session is not None:
            session.meta = meta
        else:
            self._pending[handle.handle_id] = meta
        store_attachment(handle, meta)

    def _context(self, handle: ConnectionHandle, meta: ConnectionMeta) -> RoomContext:
        return RoomContext(runtime=self, handle=handle, meta=meta, emit=SocketEmit(self.registry, handle, meta))

    def _send_pong(self, handle: ConnectionHandle) -> None:
        if not handle.is_open:
            return
        try:
            handle.send(encode_frame(Frame.pong()))
        except TransportError as e:
            logger.error("Failed to send pong", room=self.name, handle_id=handle.handle_id, error=str(e))

    async def _report_error(self, error: Exception, handle: ConnectionHandle, meta: ConnectionMeta) -> None:
        if self.room.on_error is None:
            return
        try:
            await _call_hook(self.room.on_error, error, self._context(handle, meta))
        except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: a failing error hook must not mask the original failure
            logger.error("Error in on_error hook", room=self.name, error=str(e), exc_info=True)
