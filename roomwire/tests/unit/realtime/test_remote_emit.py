"""Tests for remote command building, parsing and execution."""

import pytest

from roomwire.config.models import RoomSettings
from roomwire.exceptions import RemoteInvocationError
from roomwire.realtime.meta import ConnectRequest
from roomwire.realtime.remote_emit import (
    BroadcastCommand,
    ConnectedUserIdsQuery,
    RemoteEmit,
    SendToUserCommand,
    SessionCountQuery,
    SweepStaleCommand,
    execute_remote_command,
    parse_remote_command,
)
from roomwire.realtime.room_runtime import RoomRuntime


def fixed_meta(request):
    return {
        "user_id": request.query_params["user"],
        "client_id": request.query_params["client"],
        "channels": request.query_params["channels"].split(","),
    }


@pytest.fixture
async def populated(chat_room, room_settings, make_handle):
    """Runtime with alice (two clients) and bob connected to lobby."""
    chat_room.extract_meta = fixed_meta
    runtime = RoomRuntime(chat_room, settings=room_settings)
    handles = {}
    for user, client in (("alice", "a1"), ("alice", "a2"), ("bob", "b1")):
        handle = make_handle()
        await runtime.on_connect(
            handle, ConnectRequest.from_url(f"ws://t/ws?user={user}&client={client}&channels=lobby")
        )
        handles[client] = handle
    return runtime, handles


class TestBuilders:
    """RemoteEmit builders produce serializable commands."""

    def test_to_channel(self):
        command = RemoteEmit.to_channel("lobby", user_ids=["alice"]).emit("notice", {"text": "hi"})
        assert command == BroadcastCommand(channel="lobby", event="notice", data={"text": "hi"}, user_ids=["alice"])

    def test_to_user_defaults_channel(self):
        command = RemoteEmit.to_user("alice").emit("dm")
        assert isinstance(command, SendToUserCommand)
        assert command.channel == "default"

    def test_queries(self):
        assert RemoteEmit.session_count() == SessionCountQuery()
        assert RemoteEmit.connected_user_ids() == ConnectedUserIdsQuery()
        assert RemoteEmit.sweep_stale() == SweepStaleCommand()

    def test_commands_have_no_exclude_filter(self):
        with pytest.raises(ValueError):
            BroadcastCommand(channel="lobby", exclude="h1")


class TestParse:
    """Validation of commands received from remote callers."""

    def test_parse_json(self):
        command = parse_remote_command('{"kind": "send_to_user", "user_id": "bob", "event": "x"}')
        assert command == SendToUserCommand(user_id="bob", event="x")

    def test_parse_mapping_and_model(self):
        built = RemoteEmit.to_channel("lobby").emit("x", 1)
        assert parse_remote_command(built.model_dump()) == built
        assert parse_remote_command(built) == built

    @pytest.mark.parametrize(
        "raw",
        [
            {"kind": "explode"},
            {"kind": "broadcast"},
            {"kind": "broadcast", "channel": ""},
            {"kind": "session_count", "extra": 1},
            "not json",
        ],
    )
    def test_invalid_commands_raise(self, raw):
        with pytest.raises(RemoteInvocationError) as exc_info:
            parse_remote_command(raw)
        assert "errors" in exc_info.value.details

    def test_error_names_the_command(self):
        with pytest.raises(RemoteInvocationError) as exc_info:
            parse_remote_command({"kind": "broadcast"})
        assert exc_info.value.command == "broadcast"


class TestExecute:
    """Execution against the owning runtime."""

    @pytest.mark.asyncio
    async def test_broadcast_wraps_envelope(self, populated):
        runtime, handles = populated
        result = execute_remote_command(runtime, RemoteEmit.to_channel("lobby").emit("notice", "hi"))

        assert result.result == 3
        assert handles["b1"].frames()[-1]["data"] == {"event": "notice", "data": "hi"}

    @pytest.mark.asyncio
    async def test_broadcast_without_event_sends_raw_data(self, populated):
        runtime, handles = populated
        execute_remote_command(runtime, BroadcastCommand(channel="lobby", data={"raw": True}, client_ids=["a2"]))

        assert handles["a2"].frames() == [{"type": "event", "channel": "lobby", "data": {"raw": True}}]
        assert handles["a1"].sent == []

    @pytest.mark.asyncio
    async def test_send_to_user(self, populated):
        runtime, _ = populated
        assert execute_remote_command(runtime, RemoteEmit.to_user("alice", "lobby").emit("dm")).result == 2

    @pytest.mark.asyncio
    async def test_queries(self, populated):
        runtime, handles = populated
        assert execute_remote_command(runtime, SessionCountQuery()).result == 3
        assert execute_remote_command(runtime, ConnectedUserIdsQuery()).result == ["alice", "bob"]

        handles["b1"].open = False
        assert execute_remote_command(runtime, SweepStaleCommand()).result == 1
        assert execute_remote_command(runtime, ConnectedUserIdsQuery()).result == ["alice"]

    @pytest.mark.asyncio
    async def test_unencodable_payload(self, populated):
        runtime, _ = populated
        with pytest.raises(RemoteInvocationError):
            execute_remote_command(runtime, BroadcastCommand(channel="lobby", data={1, 2}))

    def test_disabled_remote_invocation(self, chat_room):
        runtime = RoomRuntime(chat_room, settings=RoomSettings(enable_remote_invocation=False))
        with pytest.raises(RemoteInvocationError):
            execute_remote_command(runtime, SessionCountQuery())
