"""Tests for redaction and request correlation in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

import pytest

from app.core.logging import (
    JsonFormatter,
    RequestIdFilter,
    SensitiveDataFilter,
    clear_request_id,
    redact,
    set_request_id,
)


@pytest.fixture
def capture() -> tuple[logging.Logger, StringIO]:
    logger = logging.getLogger("test_redaction")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    return logger, stream


def test_client_addresses_are_redacted(capture):
    logger, stream = capture

    logger.info(
        "rate_limit.debug",
        extra={
            "identifier": "203.0.113.7",
            "x-forwarded-for": "203.0.113.7, 10.0.0.1",
            "identifier_hash": "ab12cd34ef56ab78",
        },
    )

    output = stream.getvalue()
    assert "203.0.113.7" not in output
    assert "[REDACTED]" in output
    assert "ab12cd34ef56ab78" in output


def test_database_url_is_redacted(capture):
    logger, stream = capture

    logger.info(
        "quota_store.configured",
        extra={"database_url": "postgresql+asyncpg://admin:hunter2@db/portal"},
    )

    assert "hunter2" not in stream.getvalue()


def test_safe_fields_pass_through(capture):
    logger, stream = capture

    logger.warning(
        "rate_limit.exceeded",
        extra={"profile": "auth", "limit": 5, "remaining": 0, "reset_s": 1800},
    )

    record = json.loads(stream.getvalue())
    assert record["message"] == "rate_limit.exceeded"
    assert record["level"] == "warning"
    assert record["profile"] == "auth"
    assert record["reset_s"] == 1800
    assert "[REDACTED]" not in stream.getvalue()


def test_request_id_from_context_is_attached(capture):
    logger, stream = capture
    set_request_id("req-42")
    try:
        logger.info("rate_limit.allowed")
    finally:
        clear_request_id()

    assert json.loads(stream.getvalue())["request_id"] == "req-42"


def test_redact_handles_nested_mappings_and_sequences():
    value = {
        "headers": {"Authorization": "Bearer abc", "user-agent": "pytest"},
        "hops": [{"client_ip": "10.0.0.1"}, {"port": 443}],
    }

    assert redact(value) == {
        "headers": {"Authorization": "[REDACTED]", "user-agent": "pytest"},
        "hops": [{"client_ip": "[REDACTED]"}, {"port": 443}],
    }
