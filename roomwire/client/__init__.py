"""Reconnecting realtime client for roomwire rooms."""

from .client import RealtimeClient
from .connection_state import ConnectionState, LifecycleEvent
from .foreground import ForegroundSignal, ManualForegroundSignal, NullForegroundSignal
from .transport import TransportConnection, TransportFactory, WebsocketsTransportFactory

__all__ = [
    "ConnectionState",
    "ForegroundSignal",
    "LifecycleEvent",
    "ManualForegroundSignal",
    "NullForegroundSignal",
    "RealtimeClient",
    "TransportConnection",
    "TransportFactory",
    "WebsocketsTransportFactory",
]
