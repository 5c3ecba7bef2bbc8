"""Structured logging setup for Pulse Trading Hub.

Every log line includes: timestamp, level, module tag, message, and structured data.
Lines logged while a WebSocket connection is being served also carry its
connection ID. Secrets (credentials, tokens) are redacted from log output.

Usage:
    from backend.common.logging import get_logger
    logger = get_logger("HUB")
    logger.info("Topic push", extra={"data": {"topic": "BTC", "recipients": 3}})
"""

from __future__ import annotations

import json
import logging
import re
import sys
from contextvars import ContextVar
from datetime import UTC, datetime

# Module tags for structured logging
MODULE_TAGS = {
    "HUB",
    "AUTH",
    "FEED",
    "API",
    "SYSTEM",
    "TEST",
}

# Set by the WebSocket endpoint for the lifetime of each connection
connection_id_var: ContextVar[str] = ContextVar("connection_id", default="")

# Regex to find secret-looking values in JSON strings
_SECRET_KEY_PATTERN = re.compile(
    r'"([^"]*(?:secret|password|token|credential|authorization)[^"]*)":\s*"([^"]*)"',
    re.IGNORECASE,
)


def _redact_secrets(text: str) -> str:
    """Replace values of secret-looking keys with [REDACTED] in a string."""
    return _SECRET_KEY_PATTERN.sub(r'"\1": "[REDACTED]"', text)


class StructuredFormatter(logging.Formatter):
    """Formats log records as structured, human-readable lines.

    Output format:
        2025-02-15T10:30:00Z | INFO | conn=3f2a9c1e | HUB | Authenticated | {"identity": "u1"}
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
        module_tag = getattr(record, "module_tag", "SYSTEM")

        # Request ID is only set inside HTTP requests (RequestIdMiddleware)
        try:
            from backend.common.middleware import request_id_var

            rid = request_id_var.get("")
        except ImportError:
            rid = ""
        cid = connection_id_var.get("")

        data = getattr(record, "data", None)
        data_str = ""
        if data is not None:
            try:
                data_str = _redact_secrets(json.dumps(data, default=str))
            except (TypeError, ValueError):
                data_str = str(data)

        parts = [timestamp, record.levelname]
        if rid:
            parts.append(f"rid={rid[:8]}")
        if cid:
            parts.append(f"conn={cid[:8]}")
        parts.extend([module_tag, _redact_secrets(record.getMessage())])
        if data_str:
            parts.append(data_str)

        return " | ".join(parts)


class ModuleTagLogger(logging.LoggerAdapter):
    """Logger adapter that injects module_tag and supports structured data.

    Usage:
        logger = get_logger("AUTH")
        logger.warning("Credential rejected", extra={"data": {"reason": "expired"}})
    """

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        extra = kwargs.get("extra", {})
        extra["module_tag"] = self.extra.get("module_tag", "SYSTEM")
        kwargs["extra"] = extra
        return msg, kwargs


class StdoutHandler(logging.StreamHandler):
    """StreamHandler writing to whatever ``sys.stdout`` is at emit time."""

    @property
    def stream(self):  # noqa: ANN201
        return sys.stdout

    @stream.setter
    def stream(self, value) -> None:  # noqa: ANN001
        pass


# Cache loggers to avoid duplicate handlers
_loggers: dict[str, ModuleTagLogger] = {}
_level = logging.DEBUG


def set_log_level(level: str) -> None:
    """Apply a level name (e.g. "INFO") to every pulse logger, now and later.

    Called once by the application factory with ``settings.log_level``.
    """
    global _level
    _level = logging.getLevelNamesMapping()[level.upper()]
    for adapter in _loggers.values():
        adapter.logger.setLevel(_level)


def get_logger(module_tag: str) -> ModuleTagLogger:
    """Get a structured logger with the given module tag.

    Args:
        module_tag: One of the MODULE_TAGS (HUB, AUTH, FEED, etc.)

    Returns:
        A logger adapter that injects the module tag into every log line.
    """
    if module_tag in _loggers:
        return _loggers[module_tag]

    logger = logging.getLogger(f"pulse.{module_tag.lower()}")

    if not logger.handlers:
        handler = StdoutHandler()
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
        logger.setLevel(_level)
        logger.propagate = False

    adapter = ModuleTagLogger(logger, {"module_tag": module_tag})
    _loggers[module_tag] = adapter
    return adapter
