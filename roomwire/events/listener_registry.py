"""
Listener registry shared by the client and the room runtime.

Handlers are registered per event name. emit() fans out to every handler for
the event plus any "*" wildcard handlers. Synchronous handlers run inline;
awaitables they return are gathered concurrently and emit() only returns once
all of them have settled. A failing handler is logged and never affects its
siblings or the caller.
"""

import asyncio
import functools
import inspect
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

WILDCARD = "*"

Handler = Callable[..., Any]


def _handler_name(handler: Handler) -> str:
    return getattr(handler, "__qualname__", None) or getattr(handler, "__name__", None) or repr(handler)


class ListenerRegistry:
    """
    Event name to handler mapping with fault-isolated fan-out.

    Wildcard handlers registered under "*" receive the event name as their
    first argument, followed by the emitted arguments.
    """

    def __init__(self, name: str = "listeners") -> None:
        self.name = name
        self._handlers: dict[str, list[Handler]] = {}

    def on(self, event: str, handler: Handler | None = None) -> Any:
        """
        Register a handler for an event.

        Can be used directly, ``registry.on("chat", handle_chat)``, or as a
        decorator, ``@registry.on("chat")``. Registering the same handler twice
        for the same event has no effect.

        Returns:
            The handler, so the decorator form leaves the function intact
        """
        if handler is None:
            return lambda fn: self.on(event, fn)

        if not callable(handler):
            raise ValueError("Handler must be callable")

        handlers = self._handlers.setdefault(event, [])
        if handler not in handlers:
            handlers.append(handler)
            logger.debug("Handler registered", registry=self.name, event_name=event, handler=_handler_name(handler))
        return handler

    def once(self, event: str, handler: Handler | None = None) -> Any:
        """Register a handler that removes itself after its first invocation."""
        if handler is None:
            return lambda fn: self.once(event, fn)

        @functools.wraps(handler)
        def once_wrapper(*args: Any) -> Any:
            self._remove(event, once_wrapper)
            return handler(*args)

        self.on(event, once_wrapper)
        return handler

    def off(self, event: str, handler: Handler | None = None) -> int:
        """
        Remove a handler, or every handler for the event when handler is None.

        A handler registered through once() can be removed by passing the
        original function.

        Returns:
            Number of handlers removed
        """
        handlers = self._handlers.get(event)
        if not handlers:
            return 0

        if handler is None:
            removed = len(handlers)
            del self._handlers[event]
        else:
            kept = [h for h in handlers if h is not handler and getattr(h, "__wrapped__", None) is not handler]
            removed = len(handlers) - len(kept)
            if kept:
                self._handlers[event] = kept
            else:
                del self._handlers[event]

        if removed:
            logger.debug("Handlers removed", registry=self.name, event_name=event, removed=removed)
        return removed

    def _remove(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self._handlers[event]

    async def emit(self, event: str, *args: Any) -> int:
        """
        Invoke every handler for the event plus the wildcard handlers.

        Args:
            event: Event name
            *args: Arguments passed to each handler

        Returns:
            Number of handlers invoked
        """
        # Snapshot so handlers that register or remove handlers do not disturb this pass
        specific = list(self._handlers.get(event, ()))
        wildcard = list(self._handlers.get(WILDCARD, ())) if event != WILDCARD else []

        calls: list[tuple[Handler, tuple[Any, ...]]] = [(h, args) for h in specific]
        calls.extend((h, (event, *args)) for h in wildcard)

        if not calls:
            logger.debug("No handlers for event", registry=self.name, event_name=event)
            return 0

        pending: list[Any] = []
        pending_names: list[str] = []
        for handler, call_args in calls:
            try:
                result = handler(*call_args)
            except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: one failing handler must not abort its siblings
                logger.error(
                    "Error in event handler",
                    registry=self.name,
                    event_name=event,
                    handler=_handler_name(handler),
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                continue
            if inspect.isawaitable(result):
                pending.append(result)
                pending_names.append(_handler_name(handler))

        if pending:
            results = await asyncio.gather(*pending, return_exceptions=True)
            for name, result in zip(pending_names, results, strict=True):
                if isinstance(result, Exception):
                    logger.error(
                        "Error in async event handler",
                        registry=self.name,
                        event_name=event,
                        handler=name,
                        error=str(result),
                        error_type=type(result).__name__,
                    )

        return len(calls)

    def has_handlers(self, event: str) -> bool:
        """Return True when at least one non-wildcard handler is registered for the event."""
        return bool(self._handlers.get(event))

    def listener_count(self, event: str | None = None) -> int:
        """Count handlers for one event, or across all events."""
        if event is not None:
            return len(self._handlers.get(event, ()))
        return sum(len(handlers) for handlers in self._handlers.values())

    def event_names(self) -> list[str]:
        """Event names that currently have handlers, in registration order."""
        return list(self._handlers)

    def clear(self) -> None:
        """Remove every handler."""
        self._handlers.clear()

    def rebuild(self, table: Mapping[str, Iterable[Handler]]) -> None:
        """Replace all handlers with the contents of a declarative handler table."""
        self._handlers = {}
        for event, handlers in table.items():
            for handler in handlers:
                self.on(event, handler)
        logger.debug("Handlers rebuilt", registry=self.name, events=self.event_names())
