"""Event dispatch for roomwire clients and rooms."""

from .listener_registry import WILDCARD, ListenerRegistry

__all__ = ["WILDCARD", "ListenerRegistry"]
