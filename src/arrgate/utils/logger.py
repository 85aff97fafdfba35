"""Logging utilities for the arrgate."""

import json
import logging
import os
from typing import Optional

from flask import g, has_request_context

ROOT_LOGGER_NAME = "arrgate"

# Attributes every LogRecord carries; anything else came in through `extra=`.
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "request_id"}

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON.

        Args:
            record: Log record to format.

        Returns:
            str: JSON formatted log message.
        """
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = getattr(record, "request_id", None)
        if request_id:
            log_entry["request_id"] = request_id

        # Add extra fields if present
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        # Add exception info if present
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class RequestIdFilter(logging.Filter):
    """Attach the correlation id of the current request to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        request_id = ""
        if has_request_context():
            request_id = g.get("request_id", "")
        record.request_id = request_id
        return True


def parse_level(level: str) -> int:
    return _LEVELS.get((level or "").lower(), logging.INFO)


def _build_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setLevel(level)

    if os.environ.get("ARRGATE_LOG_FORMAT", "").lower() == "json":
        formatter = StructuredFormatter()
    else:
        # Use simple formatting for local development
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
    handler.setFormatter(formatter)
    handler.addFilter(RequestIdFilter())
    return handler


def get_logger(name: str) -> logging.Logger:
    """Get a configured logger instance.

    Loggers under the `arrgate` namespace share the handler installed on the
    package root logger.

    Args:
        name: Logger name (typically __name__).

    Returns:
        logging.Logger: Configured logger instance.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)

    # Only configure if not already configured
    if not root.handlers:
        level = parse_level(os.environ.get("LOG_LEVEL", "info"))
        root.setLevel(level)
        root.addHandler(_build_handler(level))
        # Prevent duplicate logs
        root.propagate = False

    return logging.getLogger(name)


def configure_logging(level: str) -> None:
    """Apply the configured log level to the package loggers."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        get_logger(ROOT_LOGGER_NAME)
    numeric = parse_level(level)
    root.setLevel(numeric)
    for handler in root.handlers:
        handler.setLevel(numeric)

    # Keep the development server from duplicating the access log
    logging.getLogger("werkzeug").setLevel(max(numeric, logging.WARNING))


def log_request(logger: logging.Logger, method: str, path: str,
                remote_addr: Optional[str], client_cn: str) -> None:
    """Log incoming request details.

    Args:
        logger: Logger instance.
        method: HTTP method.
        path: Request path as received.
        remote_addr: Address of the caller.
        client_cn: Subject CN of the client certificate, if any.
    """
    logger.debug(
        "Incoming request %s %s", method, path,
        extra={
            "method": method,
            "path": path,
            "remote_addr": remote_addr,
            "client_cn": client_cn,
        },
    )


def log_response(logger: logging.Logger, method: str, path: str,
                 status_code: int, latency: float, client_cn: str) -> None:
    """Log completed request details.

    Args:
        logger: Logger instance.
        method: HTTP method.
        path: Path forwarded to the upstream.
        status_code: HTTP status code.
        latency: Seconds spent handling the request.
        client_cn: Subject CN of the client certificate, if any.
    """
    logger.info(
        "Request completed %s %s -> %s", method, path, status_code,
        extra={
            "method": method,
            "path": path,
            "status": status_code,
            "latency_ms": round(latency * 1000, 3),
            "client_cn": client_cn,
        },
    )


def log_rejection(logger: logging.Logger, method: str, path: str,
                  status_code: int, reason: str, client_cn: str) -> None:
    """Log a request the gateway refused to forward."""
    logger.warning(
        "Request blocked %s %s: %s", method, path, reason,
        extra={
            "method": method,
            "path": path,
            "status": status_code,
            "reason": reason,
            "client_cn": client_cn,
        },
    )
