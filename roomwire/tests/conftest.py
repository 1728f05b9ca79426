"""
Test configuration and shared fixtures for the roomwire test suite.
"""

import os
from collections.abc import Generator
from typing import Any

import pytest
import structlog

# Set before any roomwire module loads configuration
os.environ.setdefault("ROOMWIRE_ENV", "unit_test")
os.environ.setdefault("ROOMWIRE_LOGGING_LEVEL", "DEBUG")

from roomwire.config import reset_config  # noqa: E402
from roomwire.config.models import ClientSettings, ReconnectionPolicy, RoomSettings  # noqa: E402
from roomwire.realtime.room import define_room  # noqa: E402
from roomwire.realtime.room_runtime import RoomRuntime  # noqa: E402
from roomwire.structured_logging.enhanced_logging_config import get_logger  # noqa: E402
from roomwire.tests.fixtures.fakes import FakeClock, FakeHandle, FakeTransportFactory  # noqa: E402

logger = get_logger(__name__)


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config cache before and after each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture(autouse=True)
def clear_log_context() -> Generator[None, None, None]:
    """Keep structlog context variables from leaking between tests."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def fast_client_settings() -> ClientSettings:
    """Client settings with short timers so lifecycle tests finish quickly."""
    return ClientSettings(
        reconnection=ReconnectionPolicy(max_attempts=3, initial_delay=0.01, max_delay=0.05, backoff_multiplier=2.0),
        max_queue_size=5,
        connection_timeout=0.5,
        ping_interval=0,
        pong_timeout=0,
    )


@pytest.fixture
def transport_factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock(start=100.0)


@pytest.fixture
def make_handle() -> Any:
    """Factory for FakeHandles with predictable ids."""
    counter = {"n": 0}

    def _make(is_open: bool = True) -> FakeHandle:
        counter["n"] += 1
        return FakeHandle(f"handle-{counter['n']}", is_open=is_open)

    return _make


@pytest.fixture
def room_settings() -> RoomSettings:
    return RoomSettings()


@pytest.fixture
def chat_room():
    """A room with no hooks; tests attach the hooks they need."""
    return define_room("chat", "/ws/chat")


@pytest.fixture
def runtime(chat_room, room_settings) -> RoomRuntime:
    return RoomRuntime(chat_room, settings=room_settings)


def pytest_collection_modifyitems(config: Any, items: list[Any]) -> None:
    """Mark every test under unit/ with the unit marker."""
    for item in items:
        file_path = str(item.fspath)
        if "/unit/" in file_path or "\\unit\\" in file_path:
            item.add_marker(pytest.mark.unit)
