"""
FastAPI host for room runtimes.

Wires a RoomRuntime into a FastAPI application: a WebSocket route drives the
runtime's upcalls and an HTTP route accepts remote commands.

Example:
    room = define_room("chat", "/ws/chat")
    runtime = RoomRuntime(room, host=FastAPISessionHost())
    app.include_router(create_room_router(runtime))
"""

import asyncio
import json
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Body, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from ..config import get_config
from ..config.models import AppConfig
from ..exceptions import (
    ConfigurationError,
    ErrorContext,
    RemoteInvocationError,
    TransportClosedError,
    handle_exception,
)
from ..protocol.close_codes import GOING_AWAY, NORMAL_CLOSURE
from ..realtime.handle import ConnectionHandle, InMemorySessionHost
from ..realtime.meta import ConnectRequest
from ..realtime.remote_emit import execute_remote_command, parse_remote_command
from ..realtime.room_runtime import RoomRuntime
from ..structured_logging.enhanced_logging_config import get_logger, setup_enhanced_logging

logger = get_logger(__name__)

CLOSE_TIMEOUT = 2.0


@dataclass(frozen=True)
class _CloseRequest:
    code: int
    reason: str


class FastAPIConnectionHandle(ConnectionHandle):
    """
    ConnectionHandle over a Starlette WebSocket.

    send() and close() only enqueue; a writer task owned by the handle performs
    the actual socket writes in order. The attachment is kept as JSON text.
    """

    def __init__(self, websocket: WebSocket, handle_id: str | None = None) -> None:
        self._websocket = websocket
        self._handle_id = handle_id or str(uuid.uuid4())
        self._outbox: asyncio.Queue[str | _CloseRequest] = asyncio.Queue()
        self._close_requested = False
        self._disconnected = False
        self._attachment: str | None = None
        self._writer: asyncio.Task[None] | None = None

    @property
    def handle_id(self) -> str:
        return self._handle_id

    @property
    def is_open(self) -> bool:
        return (
            not self._close_requested
            and not self._disconnected
            and self._websocket.client_state == WebSocketState.CONNECTED
            and self._websocket.application_state == WebSocketState.CONNECTED
        )

    def send(self, message: str) -> None:
        if not self.is_open:
            raise TransportClosedError("WebSocket is closed", transport="fastapi")
        self._outbox.put_nowait(message)

    def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if self._close_requested:
            return
        self._close_requested = True
        self._outbox.put_nowait(_CloseRequest(code, reason))

    def mark_disconnected(self) -> None:
        """Record that the peer went away; nothing more will be written."""
        self._disconnected = True

    def serialize_attachment(self, value: dict[str, Any]) -> None:
        self._attachment = json.dumps(value)

    def deserialize_attachment(self) -> Any:
        if self._attachment is None:
            return None
        return json.loads(self._attachment)

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._drain(), name=f"roomwire-writer-{self._handle_id}")

    async def finish(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        """Close if still open and wait for queued frames to be written."""
        self.close(code, reason)
        if self._writer is None:
            return
        try:
            await asyncio.wait_for(self._writer, timeout=CLOSE_TIMEOUT)
        except TimeoutError:
            logger.warning("Writer did not finish in time", handle_id=self._handle_id)

    async def _drain(self) -> None:
        while True:
            item = await self._outbox.get()
            if isinstance(item, _CloseRequest):
                await self._close_socket(item)
                return
            if self._disconnected or self._websocket.application_state != WebSocketState.CONNECTED:
                continue
            try:
                await self._websocket.send_text(item)
            except (WebSocketDisconnect, RuntimeError, ConnectionError) as e:
                logger.debug("WebSocket send failed", handle_id=self._handle_id, error=str(e))
                self._disconnected = True

    async def _close_socket(self, request: _CloseRequest) -> None:
        if (
            self._disconnected
            or self._websocket.application_state == WebSocketState.DISCONNECTED
            or self._websocket.client_state == WebSocketState.DISCONNECTED
        ):
            return
        try:
            await self._websocket.close(code=request.code, reason=request.reason)
        except (WebSocketDisconnect, RuntimeError, ConnectionError) as e:
            logger.debug("WebSocket close failed", handle_id=self._handle_id, error=str(e))


class FastAPISessionHost(InMemorySessionHost):
    """Tracks the FastAPI handles of one room so resume() can enumerate them."""

    async def close_all(self, code: int = GOING_AWAY, reason: str = "Server shutting down") -> int:
        """Close every tracked handle, e.g. from an application shutdown hook."""
        handles = [handle for handle in self.get_open_handles() if isinstance(handle, FastAPIConnectionHandle)]
        await asyncio.gather(*(handle.finish(code, reason) for handle in handles), return_exceptions=True)
        logger.info("Closed all connections", count=len(handles), code=code)
        return len(handles)


def create_room_router(runtime: RoomRuntime, host: InMemorySessionHost | None = None) -> APIRouter:
    """
    Build the routes serving one room.

    The host that tracks handles must be the runtime's host, so resume() sees
    the same handles; passing a different one rebinds the runtime to it.

    Raises:
        ConfigurationError: If no host is given and the runtime's host cannot track handles
    """
    if host is None:
        if not isinstance(runtime.host, InMemorySessionHost):
            raise ConfigurationError(
                "Runtime host cannot track FastAPI handles; pass a FastAPISessionHost", config_key="host"
            )
        host = runtime.host
    elif host is not runtime.host:
        runtime.host = host

    path = runtime.room.websocket_path
    router = APIRouter(tags=["realtime", runtime.name])

    @router.websocket(path)
    async def room_websocket(websocket: WebSocket) -> None:
        await websocket.accept()
        handle = FastAPIConnectionHandle(websocket)
        handle.start()
        host.add(handle)
        request = ConnectRequest.from_url(str(websocket.url), dict(websocket.headers))

        session = None
        try:
            session = await runtime.on_connect(handle, request)
            if session is None:
                return
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes")
                if raw is not None:
                    await runtime.on_message(handle, raw)
        except Exception as e:
            logger.error(
                "Error in room WebSocket", room=runtime.name, handle_id=handle.handle_id, error=str(e), exc_info=True
            )
            raise
        finally:
            host.remove(handle)
            if session is not None:
                handle.mark_disconnected()
                await runtime.on_disconnect(handle)
            await handle.finish()

    @router.post(f"{path}/rpc")
    async def room_rpc(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
        if not runtime.settings.enable_remote_invocation:
            raise HTTPException(status_code=403, detail="Remote invocation is disabled")
        try:
            command = parse_remote_command(payload)
            result = execute_remote_command(runtime, command)
        except RemoteInvocationError as e:
            logger.warning("Rejected remote command", room=runtime.name, error=e.message, details=e.details)
            raise HTTPException(status_code=422, detail=e.to_dict()) from e
        except Exception as e:
            error = handle_exception(e, ErrorContext(room=runtime.name))
            logger.error("Remote command failed", room=runtime.name, error=error.message, error_type=type(e).__name__)
            raise HTTPException(
                status_code=500, detail={"error_type": type(error).__name__, "message": error.message}
            ) from e
        return result.model_dump()

    logger.debug("Room router created", room=runtime.name, websocket_path=path)
    return router


def create_room_app(*runtimes: RoomRuntime, config: AppConfig | None = None, **fastapi_kwargs: Any) -> FastAPI:
    """
    Create a FastAPI application serving the given rooms.

    Logging is configured from the application config. On startup every
    runtime is resumed; on shutdown every tracked connection is closed with
    1001.

    Args:
        *runtimes: Room runtimes to serve; each needs an InMemorySessionHost-based host
        config: Configuration; loaded from the environment when omitted
        **fastapi_kwargs: Passed through to FastAPI()
    """
    config = config or get_config()
    setup_enhanced_logging(config.logging.to_logging_dict())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        for runtime in runtimes:
            await runtime.resume()
        logger.info("Room server started", rooms=[runtime.name for runtime in runtimes])
        yield
        logger.info("Shutting down room server")
        for runtime in runtimes:
            if isinstance(runtime.host, FastAPISessionHost):
                await runtime.host.close_all()

    fastapi_kwargs.setdefault("title", "roomwire")
    app = FastAPI(lifespan=lifespan, **fastapi_kwargs)
    for runtime in runtimes:
        app.include_router(create_room_router(runtime))
    return app
