"""
Pydantic-based configuration models for roomwire.

Settings are read from environment variables (and a .env file when present).
All durations are expressed in seconds.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class ReconnectionPolicy(BaseModel):
    """
    Exponential backoff policy for client reconnection.

    Delays start at initial_delay and grow by backoff_multiplier after each
    scheduled attempt, capped at max_delay. A max_attempts of 0 means retry
    forever.
    """

    enabled: bool = Field(default=True, description="Reconnect automatically after an abnormal close")
    max_attempts: int = Field(default=10, description="Attempts before giving up (0 = unlimited)")
    initial_delay: float = Field(default=1.0, description="Delay before the first retry in seconds")
    max_delay: float = Field(default=30.0, description="Upper bound for any single delay in seconds")
    backoff_multiplier: float = Field(default=1.5, description="Growth factor applied after each attempt")

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        """Validate attempt budget."""
        if v < 0:
            raise ValueError("max_attempts must be >= 0")
        return v

    @field_validator("initial_delay")
    @classmethod
    def validate_initial_delay(cls, v: float) -> float:
        """Validate initial delay."""
        if v <= 0:
            raise ValueError("initial_delay must be positive")
        return v

    @field_validator("backoff_multiplier")
    @classmethod
    def validate_multiplier(cls, v: float) -> float:
        """A multiplier below 1 would make delays shrink."""
        if v < 1:
            raise ValueError("backoff_multiplier must be >= 1")
        return v

    @model_validator(mode="after")
    def validate_delay_bounds(self) -> "ReconnectionPolicy":
        """Ensure the cap is not below the starting delay."""
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        return self


class ClientSettings(BaseSettings):
    """Realtime client configuration."""

    reconnection: ReconnectionPolicy = Field(default_factory=ReconnectionPolicy)
    max_queue_size: int = Field(default=100, description="Outbound messages buffered while offline")
    connection_timeout: float = Field(default=10.0, description="Seconds allowed for one connection attempt")
    ping_interval: float = Field(default=5.0, description="Seconds between keepalive pings (0 disables)")
    pong_timeout: float = Field(default=5.0, description="Extra seconds tolerated without a pong")

    @field_validator("max_queue_size")
    @classmethod
    def validate_queue_size(cls, v: int) -> int:
        """Validate queue capacity."""
        if v < 1:
            raise ValueError("max_queue_size must be at least 1")
        return v

    @field_validator("connection_timeout")
    @classmethod
    def validate_connection_timeout(cls, v: float) -> float:
        """Validate connection timeout."""
        if v <= 0:
            raise ValueError("connection_timeout must be positive")
        return v

    @field_validator("ping_interval", "pong_timeout")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        """Validate keepalive intervals."""
        if v < 0:
            raise ValueError("Keepalive intervals must be >= 0")
        return v

    model_config = {
        "env_prefix": "ROOMWIRE_CLIENT_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "extra": "ignore",
    }


class RoomSettings(BaseSettings):
    """Server-side room runtime configuration."""

    default_channel: str = Field(default="default", description="Channel used when none is specified")
    enable_remote_invocation: bool = Field(default=True, description="Expose the remote command endpoint")

    @field_validator("default_channel")
    @classmethod
    def validate_default_channel(cls, v: str) -> str:
        """Validate default channel name."""
        if not v.strip():
            raise ValueError("default_channel must not be empty")
        return v.strip()

    model_config = {"env_prefix": "ROOMWIRE_ROOM_", "case_sensitive": False, "extra": "ignore"}


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    environment: str | None = Field(default=None, description="Logging environment (auto-detected if unset)")
    level: str = Field(default="INFO", description="Log level")
    json_output: bool = Field(default=False, description="Render log entries as JSON")
    disable_logging: bool = Field(default=False, description="Disable all logging")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str | None) -> str | None:
        """Validate environment name."""
        valid_environments = ["unit_test", "local", "production"]
        if v is not None and v not in valid_environments:
            raise ValueError(f"Environment must be one of {valid_environments}, got '{v}'")
        return v

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}, got '{v}'")
        return v_upper

    model_config = {"env_prefix": "ROOMWIRE_LOGGING_", "case_sensitive": False, "extra": "ignore"}

    def to_logging_dict(self) -> dict[str, Any]:
        """Convert to the dictionary shape expected by setup_enhanced_logging."""
        return {
            "logging": {
                "environment": self.environment,
                "level": self.level,
                "json_output": self.json_output,
                "disable_logging": self.disable_logging,
            }
        }


class AppConfig(BaseSettings):
    """
    Composed roomwire configuration.

    Each section loads its own environment prefix.
    """

    client: ClientSettings = Field(default_factory=ClientSettings)
    room: RoomSettings = Field(default_factory=RoomSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "case_sensitive": False, "extra": "ignore"}

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        logger.debug(
            "roomwire configuration loaded",
            max_queue_size=self.client.max_queue_size,
            reconnection_enabled=self.client.reconnection.enabled,
            default_channel=self.room.default_channel,
        )
