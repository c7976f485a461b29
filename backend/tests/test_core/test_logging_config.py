"""
Unit tests for structured logging configuration
"""
import json
import logging
import uuid
from io import StringIO

import pytest

from app.core.logging_config import (
    ContextFilter,
    CustomJsonFormatter,
    SanitizingFilter,
    clear_request_id,
    get_logger,
    get_request_id,
    get_tenant_id,
    set_request_id,
    set_tenant_id,
    setup_logging,
    tenant_id_var,
)


def _record(msg="Test message", args=()):
    return logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=args,
        exc_info=None
    )


class TestRequestIdContext:
    """Test request ID context variable functionality"""

    def test_set_and_get_request_id(self):
        """request_id should be retrievable after setting"""
        test_id = str(uuid.uuid4())
        token = set_request_id(test_id)

        assert get_request_id() == test_id

        clear_request_id(token)

    def test_clear_request_id_resets_context(self):
        """clear_request_id should reset to previous value"""
        original_id = str(uuid.uuid4())
        token1 = set_request_id(original_id)

        token2 = set_request_id("nested")
        assert get_request_id() == "nested"

        clear_request_id(token2)
        assert get_request_id() == original_id

        clear_request_id(token1)

    def test_tenant_id(self):
        token = set_tenant_id("tenant-001")

        assert get_tenant_id() == "tenant-001"

        tenant_id_var.reset(token)


class TestContextFilter:
    """Test request/tenant correlation filter"""

    def test_filter_adds_ids_to_record(self):
        request_token = set_request_id("req-12345678")
        tenant_token = set_tenant_id("tenant-001")
        record = _record()

        assert ContextFilter().filter(record) is True
        assert record.request_id == "req-12345678"
        assert record.tenant_id == "tenant-001"

        tenant_id_var.reset(tenant_token)
        clear_request_id(request_token)

    def test_filter_uses_dash_when_unset(self):
        record = _record()

        ContextFilter().filter(record)

        assert record.request_id == "-"
        assert record.tenant_id == "-"

    def test_explicit_tenant_wins_over_context(self):
        token = set_tenant_id("tenant-001")
        record = _record()
        record.tenant_id = "tenant-002"

        ContextFilter().filter(record)

        assert record.tenant_id == "tenant-002"
        tenant_id_var.reset(token)


class TestSanitizingFilter:
    """Test log sanitization filter"""

    def test_filter_removes_newlines(self):
        record = _record("Line 1\nLine 2\nLine 3")

        SanitizingFilter().filter(record)

        assert record.msg == "Line 1 Line 2 Line 3"

    def test_filter_removes_crlf(self):
        record = _record("Line 1\r\nLine 2")

        SanitizingFilter().filter(record)

        assert "\r" not in record.msg
        assert "\n" not in record.msg

    def test_filter_sanitizes_args(self):
        record = _record("User input: %s", ("malicious\ninjection", 42))

        SanitizingFilter().filter(record)

        assert record.args == ("malicious injection", 42)


class TestCustomJsonFormatter:
    """Test JSON output shape"""

    def test_output_is_json_with_standard_fields(self):
        stream = StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(CustomJsonFormatter('%(timestamp)s %(level)s %(name)s %(message)s'))
        handler.addFilter(ContextFilter())
        logger = logging.getLogger(f"test.json.{uuid.uuid4().hex}")
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        logger.propagate = False

        logger.info("Offline event recorded", extra={"event_type": "offline_event_recorded", "file_count": 2})

        line = json.loads(stream.getvalue().strip())
        assert line["message"] == "Offline event recorded"
        assert line["level"] == "INFO"
        assert line["event_type"] == "offline_event_recorded"
        assert line["file_count"] == 2
        assert line["request_id"] == "-"
        assert line["tenant_id"] == "-"
        assert "timestamp" in line


class TestSetupLogging:

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_console_only_by_default(self):
        root = setup_logging(log_level="DEBUG", log_dir=None)

        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1

    def test_file_handlers_when_log_dir_set(self, tmp_path):
        root = setup_logging(log_level="INFO", log_dir=str(tmp_path))

        assert len(root.handlers) == 3
        assert (tmp_path / "app.log").exists()

    def test_get_logger(self):
        assert get_logger("app.test").name == "app.test"
