"""
HTTP client for the remote-invocation route of a FastAPI-hosted room.
"""

from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from ..exceptions import ErrorContext, RemoteInvocationError, TransportError
from ..realtime.remote_emit import RemoteResult
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class HttpRemoteRoom:
    """
    Ships remote commands to ``POST {websocket_path}/rpc`` of a running room.

    Example:
        async with HttpRemoteRoom("http://chat.internal", "/ws/chat") as room:
            await room.invoke(RemoteEmit.to_channel("lobby").emit("notice", "hi"))
    """

    def __init__(
        self,
        base_url: str,
        websocket_path: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.rpc_path = f"{websocket_path.rstrip('/')}/rpc"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def invoke(self, command: BaseModel) -> RemoteResult:
        """
        Send a command and return the owning process's result.

        Raises:
            TransportError: If the request could not be sent
            RemoteInvocationError: If the room rejected the command
        """
        kind = getattr(command, "kind", None)
        context = ErrorContext(metadata={"rpc_path": self.rpc_path})
        try:
            response = await self._client.post(self.rpc_path, json=command.model_dump(mode="json"))
        except httpx.RequestError as e:
            raise TransportError(f"Remote command request failed: {e}", context, transport="http") from e

        if response.status_code != 200:
            detail: Any = None
            try:
                detail = response.json().get("detail")
            except (ValueError, AttributeError):
                detail = response.text
            logger.warning("Remote command rejected", command=kind, status_code=response.status_code)
            raise RemoteInvocationError(
                f"Remote command rejected with HTTP {response.status_code}",
                context,
                command=kind,
                details={"status_code": response.status_code, "detail": detail},
            )

        try:
            return RemoteResult.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise RemoteInvocationError("Malformed remote command result", context, command=kind) from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpRemoteRoom":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
