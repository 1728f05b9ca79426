"""
Connection state machine for the realtime client.

Only the edges declared here are legal; python-statemachine raises
TransitionNotAllowed for anything else, so an out-of-order callback can never
silently corrupt the client's state.
"""

from datetime import UTC, datetime
from typing import Any

from statemachine import State, StateMachine

from ..structured_logging.enhanced_logging_config import get_logger
from .connection_state import ConnectionState

logger = get_logger(__name__)


class ClientConnectionStateMachine(StateMachine):
    """
    State machine for the client connection lifecycle.

    Transitions:
    - disconnected|error|reconnecting → connecting: start_connecting
    - connecting → connected: open_succeeded
    - connecting|connected → disconnected: link_lost (clean close or no retry)
    - connecting|connected → reconnecting: begin_reconnect
    - connecting|connected|reconnecting → error: give_up (attempt budget exhausted)
    - connecting|connected|reconnecting|error → disconnected: user_disconnect
    """

    disconnected = State("Disconnected", initial=True)
    connecting = State("Connecting")
    connected = State("Connected")
    reconnecting = State("Reconnecting")
    error = State("Error")

    start_connecting = disconnected.to(connecting) | error.to(connecting) | reconnecting.to(connecting)
    open_succeeded = connecting.to(connected)
    link_lost = connecting.to(disconnected) | connected.to(disconnected)
    begin_reconnect = connecting.to(reconnecting) | connected.to(reconnecting)
    give_up = connecting.to(error) | connected.to(error) | reconnecting.to(error)
    user_disconnect = (
        connecting.to(disconnected) | connected.to(disconnected) | reconnecting.to(disconnected) | error.to(disconnected)
    )

    def __init__(self, client_name: str) -> None:
        # Set attributes BEFORE super().__init__() because on_enter_state is called during init
        self.client_name = client_name
        self.total_connections = 0
        self.total_disconnections = 0
        self.last_connected_time: datetime | None = None

        super().__init__()

    def on_enter_state(self, state: State, event=None, **kwargs) -> None:
        logger.debug(
            "Client connection state transition",
            client=self.client_name,
            trigger_event=str(event) if event else "initial",
            to_state=state.id,
        )

    def on_open_succeeded(self) -> None:
        self.total_connections += 1
        self.last_connected_time = datetime.now(UTC)

    def on_exit_connected(self) -> None:
        self.total_disconnections += 1

    @property
    def connection_state(self) -> ConnectionState:
        return ConnectionState(self.current_state.id)

    def get_stats(self) -> dict[str, Any]:
        return {
            "client": self.client_name,
            "current_state": self.current_state.id,
            "total_connections": self.total_connections,
            "total_disconnections": self.total_disconnections,
            "last_connected_time": self.last_connected_time.isoformat() if self.last_connected_time else None,
        }
