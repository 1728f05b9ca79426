"""
Remote invocation of a room runtime.

Code running outside the process that owns a room (another worker, an HTTP
handler, a scheduled job) cannot touch its session registry directly. Instead
it builds a serializable command, ships it to the owning process by whatever
transport the host provides, and the owner runs execute_remote_command().

Commands are pydantic models discriminated on ``kind``. None of them exposes an
exclude filter, because a remote caller has no socket of its own. Every
command is safe to retry.
"""

from collections.abc import Mapping
from typing import TYPE_CHECKING, Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from ..exceptions import ErrorContext, FrameEncodeError, RemoteInvocationError
from ..protocol.frames import EventEnvelope
from ..structured_logging.enhanced_logging_config import get_logger
from .meta import DEFAULT_CHANNEL
from .session_registry import BroadcastOptions

if TYPE_CHECKING:
    from .room_runtime import RoomRuntime

logger = get_logger(__name__)


class BroadcastCommand(BaseModel):
    """Broadcast to a channel, optionally filtered by user and client ids."""

    kind: Literal["broadcast"] = "broadcast"
    channel: str = Field(..., min_length=1)
    event: str | None = Field(default=None, min_length=1, description="Wraps data in an event envelope when set")
    data: Any = None
    user_ids: list[str] | None = None
    client_ids: list[str] | None = None

    model_config = {"extra": "forbid", "frozen": True}


class SendToUserCommand(BaseModel):
    """Send to every session of one user on a channel."""

    kind: Literal["send_to_user"] = "send_to_user"
    user_id: str = Field(..., min_length=1)
    channel: str = Field(default=DEFAULT_CHANNEL, min_length=1)
    event: str | None = Field(default=None, min_length=1)
    data: Any = None

    model_config = {"extra": "forbid", "frozen": True}


class SessionCountQuery(BaseModel):
    kind: Literal["session_count"] = "session_count"

    model_config = {"extra": "forbid", "frozen": True}


class ConnectedUserIdsQuery(BaseModel):
    kind: Literal["connected_user_ids"] = "connected_user_ids"

    model_config = {"extra": "forbid", "frozen": True}


class SweepStaleCommand(BaseModel):
    kind: Literal["sweep_stale"] = "sweep_stale"

    model_config = {"extra": "forbid", "frozen": True}


RemoteCommand = Annotated[
    BroadcastCommand | SendToUserCommand | SessionCountQuery | ConnectedUserIdsQuery | SweepStaleCommand,
    Field(discriminator="kind"),
]

_command_adapter: TypeAdapter[RemoteCommand] = TypeAdapter(RemoteCommand)


class RemoteResult(BaseModel):
    """Outcome of a remote command: a delivery or session count, or a list of user ids."""

    result: int | list[str]


def _payload(event: str | None, data: Any) -> Any:
    return EventEnvelope(event, data).to_payload() if event is not None else data


class RemoteEmitBuilder:
    """Pending remote emit; emit() returns the command to ship."""

    def __init__(self, channel: str, user_id: str | None = None, **filters: list[str] | None) -> None:
        self.channel = channel
        self.user_id = user_id
        self.filters = filters

    def emit(self, event: str, data: Any = None) -> BroadcastCommand | SendToUserCommand:
        if self.user_id is not None:
            return SendToUserCommand(user_id=self.user_id, channel=self.channel, event=event, data=data)
        return BroadcastCommand(channel=self.channel, event=event, data=data, **self.filters)


class RemoteEmit:
    """
    Builders for remote commands.

    Example:
        command = RemoteEmit.to_channel("lobby").emit("notice", {"text": "hi"})
        await remote_room.invoke(command)
    """

    @staticmethod
    def to_channel(
        channel: str, *, user_ids: list[str] | None = None, client_ids: list[str] | None = None
    ) -> RemoteEmitBuilder:
        return RemoteEmitBuilder(channel, user_ids=user_ids, client_ids=client_ids)

    @staticmethod
    def to_user(user_id: str, channel: str = DEFAULT_CHANNEL) -> RemoteEmitBuilder:
        return RemoteEmitBuilder(channel, user_id=user_id)

    @staticmethod
    def session_count() -> SessionCountQuery:
        return SessionCountQuery()

    @staticmethod
    def connected_user_ids() -> ConnectedUserIdsQuery:
        return ConnectedUserIdsQuery()

    @staticmethod
    def sweep_stale() -> SweepStaleCommand:
        return SweepStaleCommand()


def parse_remote_command(raw: str | bytes | Mapping[str, Any] | BaseModel) -> RemoteCommand:
    """
    Validate a command received from a remote caller.

    Args:
        raw: JSON text or bytes, a mapping, or an already built command

    Raises:
        RemoteInvocationError: If the command is malformed or of an unknown kind
    """
    try:
        if isinstance(raw, str | bytes):
            return _command_adapter.validate_json(raw)
        if isinstance(raw, BaseModel):
            raw = raw.model_dump()
        return _command_adapter.validate_python(raw)
    except ValidationError as e:
        kind = raw.get("kind") if isinstance(raw, Mapping) else None
        raise RemoteInvocationError(
            "Invalid remote command",
            command=kind if isinstance(kind, str) else None,
            details={"errors": e.errors(include_url=False, include_context=False, include_input=False)},
        ) from e


def execute_remote_command(runtime: "RoomRuntime", command: RemoteCommand) -> RemoteResult:
    """
    Run a command against the runtime that owns the sessions.

    Raises:
        RemoteInvocationError: If remote invocation is disabled or the payload cannot be encoded
    """
    context = ErrorContext(room=runtime.name)
    if not runtime.settings.enable_remote_invocation:
        raise RemoteInvocationError("Remote invocation is disabled", context, command=command.kind)

    logger.debug("Executing remote command", room=runtime.name, command=command.kind)
    try:
        match command:
            case BroadcastCommand():
                options = BroadcastOptions(user_ids=command.user_ids, client_ids=command.client_ids)
                result: int | list[str] = runtime.broadcast(
                    command.channel, _payload(command.event, command.data), options
                )
            case SendToUserCommand():
                result = runtime.send_to_user(command.user_id, command.channel, _payload(command.event, command.data))
            case SessionCountQuery():
                result = runtime.session_count()
            case ConnectedUserIdsQuery():
                result = runtime.connected_user_ids()
            case SweepStaleCommand():
                result = runtime.sweep_stale()
            case _:
                raise RemoteInvocationError("Unknown remote command", context, command=str(command))
    except FrameEncodeError as e:
        raise RemoteInvocationError(
            f"Remote command payload could not be encoded: {e.message}", context, command=command.kind
        ) from e

    return RemoteResult(result=result)
