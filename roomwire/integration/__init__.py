"""Host integrations for roomwire rooms."""

from .fastapi_host import FastAPIConnectionHandle, FastAPISessionHost, create_room_app, create_room_router
from .http_remote import HttpRemoteRoom

__all__ = [
    "FastAPIConnectionHandle",
    "FastAPISessionHost",
    "HttpRemoteRoom",
    "create_room_app",
    "create_room_router",
]
