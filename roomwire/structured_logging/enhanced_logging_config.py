"""
structlog-based logging configuration for roomwire.

This is the main entry point for the logging system. Library modules obtain
their loggers through get_logger(); applications embedding roomwire call
setup_enhanced_logging() once at startup.
"""

import json
import logging
import os
import re
import sys
from typing import Any

import structlog
from structlog.contextvars import merge_contextvars
from structlog.stdlib import BoundLogger, LoggerFactory

from roomwire.structured_logging.logging_processors import add_correlation_id, sanitize_sensitive_data

# NOTE: Infrastructure code uses structlog.get_logger() directly to avoid
# circular imports during logging system initialization.
logger = structlog.get_logger(__name__)

VALID_ENVIRONMENTS = ["unit_test", "local", "production"]

_ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")


class _LoggingState:  # pylint: disable=too-few-public-methods
    """State container for logging initialization to avoid global statements."""

    initialized: bool = False
    signature: str | None = None


_logging_state = _LoggingState()


def detect_environment() -> str:
    """
    Detect the current environment.

    Returns:
        Environment name: "unit_test", "local", or "production"
    """
    if "pytest" in sys.modules:
        return "unit_test"

    env = os.getenv("ROOMWIRE_ENV")
    if env and env in VALID_ENVIRONMENTS:
        return env

    return "local"


def _strip_ansi_renderer(bound_logger: Any, name: str, event_dict: dict[str, Any]) -> str | bytes:
    """Key/value renderer that strips ANSI escape sequences."""
    try:
        formatted = structlog.processors.KeyValueRenderer(key_order=["timestamp", "level", "event"])(
            bound_logger, name, event_dict
        )
        return _ANSI_ESCAPE.sub("", formatted)
    except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: a renderer failure must never crash the caller
        return f"Logging renderer error: {type(e).__name__}: {str(e)}"


def configure_enhanced_structlog(
    environment: str | None = None,
    log_level: str = "INFO",
    json_output: bool = False,
    disable_logging: bool = False,
) -> None:
    """
    Configure structlog with sanitization and context-variable support.

    Args:
        environment: Environment name (auto-detected if None)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: Render entries as JSON instead of key/value pairs
        disable_logging: Route everything to a level above CRITICAL
    """
    if environment is None:
        environment = detect_environment()

    base_processors = [
        # Context first so bound values are sanitized and keep their correlation id
        merge_contextvars,
        sanitize_sensitive_data,
        add_correlation_id,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    level = logging.CRITICAL + 1 if disable_logging else getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger("roomwire")
    root_logger.setLevel(level)
    if not disable_logging and not any(getattr(h, "_roomwire_handler", False) for h in root_logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        handler._roomwire_handler = True  # type: ignore[attr-defined]  # Reason: marker attribute used to avoid duplicate handlers on reconfigure
        root_logger.addHandler(handler)

    renderer = structlog.processors.JSONRenderer() if json_output else _strip_ansi_renderer

    structlog.configure(
        processors=base_processors + [renderer],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=BoundLogger,
        cache_logger_on_first_use=False,
    )


def setup_enhanced_logging(config: dict[str, Any], *, force_reconfigure: bool = False) -> None:
    """
    Set up logging from a configuration dictionary.

    Args:
        config: Configuration dictionary with a "logging" section
        force_reconfigure: When True, reconfigure even if already initialized
    """
    config_signature = json.dumps(config, sort_keys=True, default=str)

    if _logging_state.initialized and not force_reconfigure:
        get_logger("roomwire.structured_logging.setup").debug(
            "setup_enhanced_logging skipped; logging system already initialized",
            config_signature=_logging_state.signature,
        )
        return

    logging_config = config.get("logging", {})
    environment = logging_config.get("environment") or detect_environment()
    log_level = logging_config.get("level", "INFO")

    configure_enhanced_structlog(
        environment,
        log_level,
        json_output=logging_config.get("json_output", False),
        disable_logging=logging_config.get("disable_logging", False),
    )

    get_logger("roomwire.structured_logging.enhanced").info(
        "Logging system initialized",
        environment=environment,
        log_level=log_level,
        security_sanitization=True,
    )

    _logging_state.initialized = True
    _logging_state.signature = config_signature


def get_logger(name: str) -> Any:  # Returns BoundLogger but typed as Any for flexibility
    """
    Get a structlog logger with the specified name.

    This is the public API for obtaining loggers. All library code should use
    this function rather than calling structlog.get_logger() directly.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger instance
    """
    return structlog.get_logger(name)


def log_exception_once(
    bound_logger: BoundLogger,
    level: str,
    message: str,
    *,
    exc: Exception | None = None,
    **kwargs: Any,
) -> None:
    """
    Log an exception once, skipping exceptions that have already been logged.

    Args:
        bound_logger: structlog bound logger instance
        level: Logging level to use (for example, "error" or "warning")
        message: Log message to emit
        exc: Optional exception to include in the log entry
        **kwargs: Additional key-value pairs for structured logging
    """
    if exc is not None:
        if getattr(exc, "_already_logged", False):
            return
        kwargs.setdefault("error_type", type(exc).__name__)
        kwargs.setdefault("error", str(exc))

    log_method = getattr(bound_logger, level.lower(), bound_logger.error)
    log_method(message, **kwargs)

    if exc is not None:
        exc._already_logged = True  # type: ignore[attr-defined]  # pylint: disable=protected-access
