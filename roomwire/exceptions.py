"""
Exception hierarchy for roomwire.

Every error raised by the library derives from RoomwireError, which carries an
ErrorContext describing the connection or session involved plus a free-form
details mapping suitable for structured logging and HTTP responses.
"""

import traceback
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class ErrorContext:
    """
    Contextual information attached to an error.

    Identifies which connection, session and room an error relates to so log
    entries can be correlated across client and server.
    """

    user_id: str | None = None
    client_id: str | None = None
    handle_id: str | None = None
    room: str | None = None
    channel: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert context to dictionary for logging."""
        return {
            "user_id": self.user_id,
            "client_id": self.client_id,
            "handle_id": self.handle_id,
            "room": self.room,
            "channel": self.channel,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class RoomwireError(Exception):
    """
    Base exception for all roomwire errors.

    Provides structured error handling with context and metadata.
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize roomwire error.

        Args:
            message: Technical error message
            context: Error context information
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.details = details or {}
        self.timestamp = datetime.now(UTC)

        self._log_error()

    def _log_error(self) -> None:
        """Log the error with structured context."""
        # Most of these are recovered from (reconnect, purge), callers decide severity
        logger.debug(
            "roomwire error created",
            error_type=self.__class__.__name__,
            message=self.message,
            context=self.context.to_dict(),
            details=self.details,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context.to_dict(),
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class ProtocolError(RoomwireError):
    """Wire protocol errors."""


class FrameEncodeError(ProtocolError):
    """A frame could not be serialized."""

    def __init__(self, message: str, context: ErrorContext | None = None, frame_type: str | None = None, **kwargs):
        super().__init__(message, context, **kwargs)
        self.frame_type = frame_type
        if frame_type:
            self.details["frame_type"] = frame_type


class TransportError(RoomwireError):
    """Errors raised by the underlying transport."""

    def __init__(self, message: str, context: ErrorContext | None = None, transport: str = "unknown", **kwargs):
        super().__init__(message, context, **kwargs)
        self.transport = transport
        self.details["transport"] = transport


class TransportClosedError(TransportError):
    """The transport was closed while sending or receiving."""

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        code: int | None = None,
        reason: str = "",
        **kwargs,
    ):
        super().__init__(message, context, **kwargs)
        self.code = code
        self.reason = reason
        if code is not None:
            self.details["code"] = code
        if reason:
            self.details["reason"] = reason


class ClientConnectionError(RoomwireError):
    """Client connection lifecycle errors."""

    def __init__(self, message: str, context: ErrorContext | None = None, attempt_id: int | None = None, **kwargs):
        super().__init__(message, context, **kwargs)
        self.attempt_id = attempt_id
        if attempt_id is not None:
            self.details["attempt_id"] = attempt_id


class ConnectionTimeoutError(ClientConnectionError):
    """A connection attempt did not open in time."""

    def __init__(self, message: str, context: ErrorContext | None = None, timeout: float | None = None, **kwargs):
        super().__init__(message, context, **kwargs)
        self.timeout = timeout
        if timeout is not None:
            self.details["timeout"] = timeout


class ConnectionLostError(ClientConnectionError):
    """The connection closed before or while a waiter was pending."""

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        code: int | None = None,
        reason: str = "",
        **kwargs,
    ):
        super().__init__(message, context, **kwargs)
        self.code = code
        self.reason = reason
        if code is not None:
            self.details["code"] = code
        if reason:
            self.details["reason"] = reason


class ClientDisconnectedError(ClientConnectionError):
    """The client was explicitly disconnected by the application."""


class MetaValidationError(RoomwireError):
    """Connection metadata failed validation."""

    def __init__(self, message: str, context: ErrorContext | None = None, field: str | None = None, **kwargs):
        super().__init__(message, context, **kwargs)
        self.field = field
        if field:
            self.details["field"] = field


class AttachmentError(RoomwireError):
    """A handle attachment is missing or cannot be decoded."""


class SessionRestoreError(RoomwireError):
    """
    Aggregate of per-handle failures encountered while restoring sessions.

    Individual failures do not abort the restore; they are collected and
    surfaced together once every handle has been visited.
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        failures: list[tuple[str, Exception]] | None = None,
        **kwargs,
    ):
        super().__init__(message, context, **kwargs)
        self.failures = failures or []
        self.details["failed_handles"] = [handle_id for handle_id, _ in self.failures]
        self.details["failure_count"] = len(self.failures)


class RemoteInvocationError(RoomwireError):
    """A remote command could not be parsed or executed."""

    def __init__(self, message: str, context: ErrorContext | None = None, command: str | None = None, **kwargs):
        super().__init__(message, context, **kwargs)
        self.command = command
        if command:
            self.details["command"] = command


class ConfigurationError(RoomwireError):
    """Configuration and setup errors."""

    def __init__(self, message: str, context: ErrorContext | None = None, config_key: str | None = None, **kwargs):
        super().__init__(message, context, **kwargs)
        self.config_key = config_key
        if config_key:
            self.details["config_key"] = config_key


def handle_exception(exc: Exception, context: ErrorContext | None = None) -> RoomwireError:
    """
    Convert a generic exception to a roomwire error.

    Args:
        exc: The original exception
        context: Error context

    Returns:
        RoomwireError instance
    """
    if isinstance(exc, RoomwireError):
        return exc

    if isinstance(exc, TimeoutError):
        return ConnectionTimeoutError(str(exc), context, details={"original_type": type(exc).__name__})
    elif isinstance(exc, ConnectionError | OSError):
        return TransportError(str(exc), context, details={"original_type": type(exc).__name__})
    elif isinstance(exc, ValueError | TypeError):
        return MetaValidationError(str(exc), context, details={"original_type": type(exc).__name__})
    else:
        return RoomwireError(
            str(exc), context, details={"original_type": type(exc).__name__, "traceback": traceback.format_exc()}
        )
