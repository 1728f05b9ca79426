"""
Per-process session registry and broadcast engine.

The registry is the authoritative set of live sessions for one room runtime. It
is in-memory and rebuildable from handle attachments, so it is never itself the
durability boundary. Every operation is synchronous: within one process,
register, unregister, broadcast and send_to_user never interleave.

Sessions whose handle is no longer open, or whose send raises, are purged in
the same pass that discovers them. Idle dead sessions that no fan-out touches
are removed by sweep_stale().
"""

from collections.abc import Collection, Iterator
from dataclasses import dataclass
from typing import Any

from ..protocol.codec import encode_frame
from ..protocol.frames import Frame
from ..structured_logging.enhanced_logging_config import get_logger
from .handle import ConnectionHandle
from .meta import ConnectionMeta

logger = get_logger(__name__)


@dataclass
class Session:
    """Binding of a live connection handle to its metadata."""

    handle: ConnectionHandle
    meta: ConnectionMeta

    @property
    def handle_id(self) -> str:
        return self.handle.handle_id


@dataclass(frozen=True)
class BroadcastOptions:
    """
    Recipient filters for a broadcast, AND-combined.

    Attributes:
        exclude: Handle that must not receive the frame, typically the sender
        user_ids: Only sessions whose user_id is listed
        client_ids: Only sessions whose client_id is listed
    """

    exclude: ConnectionHandle | None = None
    user_ids: Collection[str] | None = None
    client_ids: Collection[str] | None = None

    def admits(self, session: Session) -> bool:
        if self.exclude is not None and session.handle is self.exclude:
            return False
        if self.user_ids is not None and session.meta.user_id not in self.user_ids:
            return False
        if self.client_ids is not None and session.meta.client_id not in self.client_ids:
            return False
        return True


class SessionRegistry:
    """Live sessions of one room runtime, keyed by handle id."""

    def __init__(self, name: str = "room") -> None:
        self.name = name
        self._sessions: dict[str, Session] = {}

    def register(self, handle: ConnectionHandle, meta: ConnectionMeta) -> Session:
        """
        Add a session.

        Callers register only after the connect hook succeeded, so a failed
        connect never leaves an orphan entry.
        """
        session = Session(handle=handle, meta=meta)
        if handle.handle_id in self._sessions:
            logger.warning("Replacing existing session for handle", room=self.name, handle_id=handle.handle_id)
        self._sessions[handle.handle_id] = session
        logger.debug(
            "Session registered",
            room=self.name,
            handle_id=handle.handle_id,
            user_id=meta.user_id,
            client_id=meta.client_id,
            channels=meta.channels,
            session_count=len(self._sessions),
        )
        return session

    def unregister(self, handle: ConnectionHandle) -> Session | None:
        """Remove the session for a handle. Idempotent."""
        session = self._sessions.pop(handle.handle_id, None)
        if session is not None:
            logger.debug(
                "Session unregistered",
                room=self.name,
                handle_id=handle.handle_id,
                session_count=len(self._sessions),
            )
        return session

    def get(self, handle: ConnectionHandle) -> Session | None:
        return self._sessions.get(handle.handle_id)

    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def __contains__(self, handle: object) -> bool:
        return isinstance(handle, ConnectionHandle) and handle.handle_id in self._sessions

    def clear(self) -> None:
        self._sessions.clear()

    def broadcast(self, channel: str, payload: Any, options: BroadcastOptions | None = None) -> int:
        """
        Send an event frame to every session subscribed to channel that passes the filters.

        Args:
            channel: Target channel
            payload: Frame data, typically an event envelope
            options: Optional recipient filters

        Returns:
            Number of sessions the frame was delivered to

        Raises:
            FrameEncodeError: If payload is not serializable; nothing is sent
        """
        encoded = encode_frame(Frame.event(channel, payload))
        options = options or BroadcastOptions()
        recipients = [
            session
            for session in self._sessions.values()
            if session.meta.is_subscribed(channel) and options.admits(session)
        ]
        sent = self._deliver(recipients, encoded)
        logger.debug("Broadcast complete", room=self.name, channel=channel, recipients=len(recipients), sent=sent)
        return sent

    def send_to_user(self, user_id: str, channel: str, payload: Any) -> int:
        """
        Send an event frame to every session of a user that is subscribed to channel.

        Returns:
            Number of sessions the frame was delivered to
        """
        encoded = encode_frame(Frame.event(channel, payload))
        recipients = [
            session
            for session in self._sessions.values()
            if session.meta.user_id == user_id and session.meta.is_subscribed(channel)
        ]
        sent = self._deliver(recipients, encoded)
        logger.debug("Sent to user", room=self.name, user_id=user_id, channel=channel, sent=sent)
        return sent

    def _deliver(self, recipients: list[Session], encoded: str) -> int:
        sent = 0
        failed: list[Session] = []
        for session in recipients:
            if not session.handle.is_open:
                failed.append(session)
                continue
            try:
                session.handle.send(encoded)
                sent += 1
            except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: one broken handle must not stop the fan-out
                logger.warning(
                    "Send failed, purging session",
                    room=self.name,
                    handle_id=session.handle_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                failed.append(session)

        for session in failed:
            self._sessions.pop(session.handle_id, None)
        if failed:
            logger.debug("Purged failed sessions", room=self.name, purged=len(failed))
        return sent

    def sweep_stale(self) -> int:
        """
        Remove every session whose handle is no longer open.

        Returns:
            Number of sessions removed
        """
        stale = [handle_id for handle_id, session in self._sessions.items() if not session.handle.is_open]
        for handle_id in stale:
            del self._sessions[handle_id]
        if stale:
            logger.info("Stale sessions swept", room=self.name, removed=len(stale), remaining=len(self._sessions))
        return len(stale)

    def session_count(self) -> int:
        return len(self._sessions)

    def connected_user_ids(self) -> list[str]:
        """Distinct user ids, in the order their first session registered."""
        return list(dict.fromkeys(session.meta.user_id for session in self._sessions.values()))

    def user_handles(self, user_id: str) -> list[ConnectionHandle]:
        return [session.handle for session in self._sessions.values() if session.meta.user_id == user_id]

    def get_stats(self) -> dict[str, Any]:
        channels: dict[str, int] = {}
        for session in self._sessions.values():
            for channel in session.meta.channels:
                channels[channel] = channels.get(channel, 0) + 1
        return {
            "room": self.name,
            "session_count": len(self._sessions),
            "user_count": len(self.connected_user_ids()),
            "channels": channels,
        }
