"""Tests for roomwire's structlog configuration, processors and context helpers."""

import logging
import uuid
from unittest.mock import MagicMock

import pytest
import structlog

from roomwire.structured_logging.enhanced_logging_config import (
    configure_enhanced_structlog,
    detect_environment,
    log_exception_once,
)
from roomwire.structured_logging.logging_context import connection_log_context, get_current_context
from roomwire.structured_logging.logging_processors import add_correlation_id, sanitize_sensitive_data


class TestSanitizeSensitiveData:
    """Redaction of credential-like fields."""

    def test_redacts_credentials(self):
        result = sanitize_sensitive_data(
            None,
            "info",
            {"event": "connect", "token": "abc", "password": "x", "api_key": "k", "user_id": "u1"},
        )
        assert result["token"] == "[REDACTED]"
        assert result["password"] == "[REDACTED]"
        assert result["api_key"] == "[REDACTED]"
        assert result["user_id"] == "u1"

    def test_recurses_into_nested_dicts(self):
        result = sanitize_sensitive_data(None, "info", {"headers": {"authorization": "Bearer x", "origin": "o"}})
        assert result["headers"] == {"authorization": "[REDACTED]", "origin": "o"}

    def test_safe_fields_pass_through(self):
        assert sanitize_sensitive_data(None, "info", {"event_key": "chat"})["event_key"] == "chat"


class TestCorrelationId:
    """Correlation id processor."""

    def test_adds_id_when_missing(self):
        result = add_correlation_id(None, "info", {"event": "x"})
        uuid.UUID(result["correlation_id"])

    def test_keeps_existing_id(self):
        assert add_correlation_id(None, "info", {"correlation_id": "c-1"})["correlation_id"] == "c-1"


class TestConnectionLogContext:
    """Contextvar binding for upcalls."""

    def test_binds_and_restores(self):
        structlog.contextvars.bind_contextvars(request="outer")

        with connection_log_context(handle_id="h1", user_id="u1", correlation_id="c-1", room="chat"):
            context = get_current_context()
            assert context["handle_id"] == "h1"
            assert context["user_id"] == "u1"
            assert context["correlation_id"] == "c-1"
            assert context["room"] == "chat"
            assert "client_id" not in context

        assert get_current_context() == {"request": "outer"}

    def test_generates_correlation_id(self):
        with connection_log_context(handle_id="h1"):
            uuid.UUID(get_current_context()["correlation_id"])

    def test_restores_on_error(self):
        with pytest.raises(RuntimeError):
            with connection_log_context(handle_id="h1"):
                raise RuntimeError("boom")
        assert get_current_context() == {}

    def test_context_is_merged_into_entries(self):
        with connection_log_context(handle_id="h9", correlation_id="c-9"):
            entry = structlog.contextvars.merge_contextvars(None, "info", {"event": "inside"})

        assert entry == {"event": "inside", "handle_id": "h9", "correlation_id": "c-9"}


def test_log_exception_once_logs_only_first_time():
    bound_logger = MagicMock()
    error = RuntimeError("boom")

    log_exception_once(bound_logger, "warning", "Failed", exc=error, room="chat")
    log_exception_once(bound_logger, "warning", "Failed again", exc=error)

    bound_logger.warning.assert_called_once_with("Failed", room="chat", error_type="RuntimeError", error="boom")


def test_detect_environment_under_pytest():
    assert detect_environment() == "unit_test"


def test_configure_installs_one_handler():
    try:
        configure_enhanced_structlog("unit_test", "DEBUG")
        configure_enhanced_structlog("unit_test", "WARNING")

        root = logging.getLogger("roomwire")
        assert sum(1 for handler in root.handlers if getattr(handler, "_roomwire_handler", False)) == 1
        assert root.level == logging.WARNING
    finally:
        configure_enhanced_structlog("unit_test", "DEBUG")
