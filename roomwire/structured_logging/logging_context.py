"""
Context management utilities for structured logging.

Binds connection identity (handle, user, client) to structlog contextvars so
every log entry emitted while an upcall is running carries it.
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.contextvars import bound_contextvars


@contextmanager
def connection_log_context(
    handle_id: str | None = None,
    user_id: str | None = None,
    client_id: str | None = None,
    correlation_id: str | None = None,
    **kwargs,
) -> Iterator[None]:
    """
    Bind connection context for the duration of a block.

    Previously bound values are restored on exit, so nested upcalls and the
    caller's own context are left intact.

    Args:
        handle_id: Transport handle identifier
        user_id: User ID if known
        client_id: Client ID if known
        correlation_id: Correlation ID, generated when omitted
        **kwargs: Additional context variables
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())

    context_vars = {
        "correlation_id": correlation_id,
        "handle_id": handle_id,
        "user_id": user_id,
        "client_id": client_id,
        **kwargs,
    }

    # Remove None values
    context_vars = {k: v for k, v in context_vars.items() if v is not None}

    with bound_contextvars(**context_vars):
        yield


def get_current_context() -> dict[str, Any]:
    """Get the current logging context."""
    return structlog.contextvars.get_contextvars()
