"""
Connection metadata and connect requests.

ConnectionMeta is the identity and subscription set of one logical session.
It is validated once, when extracted from the connect request, and is also the
shape persisted as a handle attachment.
"""

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qsl, urlsplit

from pydantic import BaseModel, Field, field_validator

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CHANNEL = "default"


class ConnectionMeta(BaseModel):
    """
    Identity and channel subscriptions of one session.

    user_id and client_id jointly identify the session. Applications may add
    their own fields, either by subclassing or as extra fields, which are kept
    and persisted with the attachment.
    """

    user_id: str = Field(..., min_length=1, description="Authenticated or assigned user identifier")
    client_id: str = Field(..., min_length=1, description="Identifier of this particular client instance")
    channels: list[str] = Field(default_factory=list, description="Subscribed channels, in order")

    model_config = {"extra": "allow"}

    @field_validator("channels")
    @classmethod
    def validate_channels(cls, v: list[str]) -> list[str]:
        """Strip names, reject empty ones and drop duplicates while keeping order."""
        seen: list[str] = []
        for channel in v:
            name = channel.strip()
            if not name:
                raise ValueError("Channel names must not be empty")
            if name not in seen:
                seen.append(name)
        return seen

    @property
    def default_channel(self) -> str:
        return self.channels[0] if self.channels else DEFAULT_CHANNEL

    def is_subscribed(self, channel: str) -> bool:
        return channel in self.channels

    def to_attachment(self) -> dict[str, Any]:
        """JSON-ready snapshot used as the handle attachment."""
        return self.model_dump(mode="json")


def placeholder_meta() -> ConnectionMeta:
    """Meta passed to error hooks when the real meta could not be extracted."""
    return ConnectionMeta(user_id="unknown", client_id="unknown", channels=[])


@dataclass(frozen=True)
class ConnectRequest:
    """The parts of an incoming connection request a meta extractor may inspect."""

    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    query_params: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_url(cls, url: str, headers: Mapping[str, str] | None = None) -> "ConnectRequest":
        """Build a request, parsing query parameters from the URL (last value wins)."""
        query_params = dict(parse_qsl(urlsplit(url).query, keep_blank_values=True))
        return cls(url=url, headers=dict(headers or {}), query_params=query_params)

    def header(self, name: str) -> str | None:
        """Look up a request header, ignoring case."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


def parse_channels(raw: str | None) -> list[str]:
    """Split a comma-separated channel list, ignoring blanks."""
    if not raw:
        return []
    return [channel.strip() for channel in raw.split(",") if channel.strip()]


def default_extract_meta(request: ConnectRequest) -> dict[str, Any]:
    """
    Default meta extractor.

    Assigns random user and client ids and subscribes to the channels named in
    the ``channels`` query parameter, or to "default" when none are given.
    """
    channels = parse_channels(request.query_params.get("channels")) or [DEFAULT_CHANNEL]
    meta = {
        "user_id": str(uuid.uuid4()),
        "client_id": str(uuid.uuid4()),
        "channels": channels,
    }
    logger.debug("Extracted default connection meta", channels=channels)
    return meta
