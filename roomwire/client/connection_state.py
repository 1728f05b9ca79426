"""Client-visible connection states."""

from enum import Enum


class ConnectionState(str, Enum):
    """The client's view of its own link health."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


class LifecycleEvent(str, Enum):
    """Lifecycle notifications emitted on RealtimeClient.lifecycle."""

    STATE_CHANGE = "state_change"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CLOSE = "close"
    ERROR = "error"
    RECONNECTING = "reconnecting"
