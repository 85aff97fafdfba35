"""Unit tests for logging utilities."""

import json
import logging
import sys

import pytest
from flask import Flask, g

from arrgate.utils.logger import (
    ROOT_LOGGER_NAME,
    RequestIdFilter,
    StructuredFormatter,
    configure_logging,
    get_logger,
    log_rejection,
    log_response,
    parse_level,
)


def make_record(msg="hello %s", args=("world",), level=logging.INFO, **extra):
    record = logging.LogRecord("arrgate.test", level, __file__, 10, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_levels():
    root = logging.getLogger(ROOT_LOGGER_NAME)
    werkzeug_logger = logging.getLogger("werkzeug")
    saved = (root.level, [h.level for h in root.handlers], werkzeug_logger.level)
    yield
    root.setLevel(saved[0])
    for handler, level in zip(root.handlers, saved[1]):
        handler.setLevel(level)
    werkzeug_logger.setLevel(saved[2])


class TestStructuredFormatter:

    def test_format(self):
        output = json.loads(StructuredFormatter().format(make_record()))

        assert output["level"] == "INFO"
        assert output["logger"] == "arrgate.test"
        assert output["message"] == "hello world"
        assert "timestamp" in output
        assert "request_id" not in output

    def test_extra_fields_and_request_id(self):
        record = make_record(request_id="req-1", status=403, reason="denied")

        output = json.loads(StructuredFormatter().format(record))

        assert output["request_id"] == "req-1"
        assert output["status"] == 403
        assert output["reason"] == "denied"

    def test_exception(self):
        try:
            raise ValueError("broken")
        except ValueError:
            record = make_record(level=logging.ERROR)
            record.exc_info = sys.exc_info()

        output = json.loads(StructuredFormatter().format(record))

        assert "ValueError: broken" in output["exception"]


class TestRequestIdFilter:

    def test_outside_request(self):
        record = make_record()

        assert RequestIdFilter().filter(record) is True
        assert record.request_id == ""

    def test_inside_request(self):
        app = Flask(__name__)
        record = make_record()

        with app.test_request_context("/"):
            g.request_id = "req-42"
            RequestIdFilter().filter(record)

        assert record.request_id == "req-42"


@pytest.mark.parametrize("value,expected", [
    ("debug", logging.DEBUG),
    ("INFO", logging.INFO),
    ("warn", logging.WARNING),
    ("error", logging.ERROR),
    ("unknown", logging.INFO),
    (None, logging.INFO),
])
def test_parse_level(value, expected):
    assert parse_level(value) == expected


def test_get_logger_shares_package_handler():
    logger = get_logger("arrgate.some.module")
    root = logging.getLogger(ROOT_LOGGER_NAME)

    assert logger.name == "arrgate.some.module"
    assert len(root.handlers) == 1


def test_configure_logging(restore_levels):
    configure_logging("error")

    root = logging.getLogger(ROOT_LOGGER_NAME)
    assert root.level == logging.ERROR
    assert all(handler.level == logging.ERROR for handler in root.handlers)
    assert logging.getLogger("werkzeug").level == logging.ERROR


def test_configure_logging_quiets_werkzeug(restore_levels):
    configure_logging("debug")

    assert logging.getLogger("werkzeug").level == logging.WARNING


def test_audit_helpers(caplog):
    logger = get_logger("arrgate.audit")

    with caplog.at_level(logging.INFO):
        log_response(logger, "GET", "/api", 200, 0.0123, "test-client")
        log_rejection(logger, "DELETE", "/api", 403, "not whitelisted", "unknown")

    completed, blocked = caplog.records
    assert completed.levelno == logging.INFO
    assert completed.latency_ms == 12.3
    assert completed.client_cn == "test-client"
    assert blocked.levelno == logging.WARNING
    assert blocked.reason == "not whitelisted"
