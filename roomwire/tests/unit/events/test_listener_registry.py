"""
Unit tests for the listener registry.

Tests registration, removal, wildcard dispatch and fault isolation.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from roomwire.events.listener_registry import WILDCARD, ListenerRegistry


@pytest.fixture
def registry():
    """Create a ListenerRegistry instance."""
    return ListenerRegistry("test")


def test_on_registers_handler(registry):
    handler = MagicMock()
    registry.on("chat", handler)
    assert registry.has_handlers("chat")
    assert registry.listener_count("chat") == 1


def test_on_ignores_duplicate(registry):
    """Registering the same handler twice has no effect."""
    handler = MagicMock()
    registry.on("chat", handler)
    registry.on("chat", handler)
    assert registry.listener_count("chat") == 1


def test_on_as_decorator(registry):
    @registry.on("chat")
    def handle_chat(data):
        return data

    assert registry.has_handlers("chat")
    assert handle_chat("x") == "x"


def test_on_rejects_non_callable(registry):
    with pytest.raises(ValueError):
        registry.on("chat", "not callable")


def test_off_specific_handler(registry):
    first, second = MagicMock(), MagicMock()
    registry.on("chat", first)
    registry.on("chat", second)
    assert registry.off("chat", first) == 1
    assert registry.listener_count("chat") == 1


def test_off_all_handlers(registry):
    registry.on("chat", MagicMock())
    registry.on("chat", MagicMock())
    assert registry.off("chat") == 2
    assert not registry.has_handlers("chat")
    assert "chat" not in registry.event_names()


def test_off_unknown_event(registry):
    assert registry.off("missing") == 0


def test_empty_registry_is_truthy(registry):
    """An empty registry must not be mistaken for a missing one."""
    assert registry


def test_wildcard_does_not_count_as_specific_handler(registry):
    registry.on(WILDCARD, MagicMock())
    assert not registry.has_handlers("chat")
    assert registry.has_handlers(WILDCARD)


@pytest.mark.asyncio
async def test_emit_passes_arguments(registry):
    handler = MagicMock()
    registry.on("chat", handler)
    count = await registry.emit("chat", "ctx", {"text": "hi"})
    assert count == 1
    handler.assert_called_once_with("ctx", {"text": "hi"})


@pytest.mark.asyncio
async def test_emit_wildcard_receives_event_name_first(registry):
    specific = MagicMock()
    wildcard = MagicMock()
    registry.on("chat", specific)
    registry.on(WILDCARD, wildcard)

    count = await registry.emit("chat", 1, 2)

    assert count == 2
    specific.assert_called_once_with(1, 2)
    wildcard.assert_called_once_with("chat", 1, 2)


@pytest.mark.asyncio
async def test_emit_without_handlers_returns_zero(registry):
    assert await registry.emit("nothing") == 0


@pytest.mark.asyncio
async def test_emit_awaits_async_handlers(registry):
    handler = AsyncMock()
    registry.on("chat", handler)
    await registry.emit("chat", "payload")
    handler.assert_awaited_once_with("payload")


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_siblings(registry):
    """A sync exception is logged and the remaining handlers still run."""
    failing = MagicMock(side_effect=RuntimeError("boom"))
    failing.__qualname__ = "failing"
    healthy = MagicMock()
    registry.on("chat", failing)
    registry.on("chat", healthy)

    count = await registry.emit("chat", "x")

    assert count == 2
    healthy.assert_called_once_with("x")


@pytest.mark.asyncio
async def test_failing_async_handler_is_isolated(registry):
    failing = AsyncMock(side_effect=ValueError("bad"))
    healthy = AsyncMock()
    registry.on("chat", failing)
    registry.on("chat", healthy)

    await registry.emit("chat")

    healthy.assert_awaited_once()


@pytest.mark.asyncio
async def test_once_runs_a_single_time(registry):
    handler = MagicMock()
    registry.once("ready", handler)

    await registry.emit("ready", 1)
    await registry.emit("ready", 2)

    handler.assert_called_once_with(1)
    assert not registry.has_handlers("ready")


def test_off_removes_once_handler_by_original(registry):
    def handler():
        return None

    registry.once("ready", handler)
    assert registry.off("ready", handler) == 1
    assert not registry.has_handlers("ready")


@pytest.mark.asyncio
async def test_handler_added_during_emit_runs_next_time(registry):
    """Emit works on a snapshot of the handler list."""
    late = MagicMock()

    def add_late(*args):
        registry.on("chat", late)

    registry.on("chat", add_late)
    await registry.emit("chat")
    late.assert_not_called()

    await registry.emit("chat")
    late.assert_called_once()


def test_rebuild_replaces_table(registry):
    old = MagicMock()
    new_a, new_b = MagicMock(), MagicMock()
    registry.on("old", old)

    registry.rebuild({"a": [new_a], "b": [new_b, new_b]})

    assert registry.event_names() == ["a", "b"]
    assert registry.listener_count() == 2
    assert not registry.has_handlers("old")


def test_clear(registry):
    registry.on("a", MagicMock())
    registry.clear()
    assert registry.listener_count() == 0
