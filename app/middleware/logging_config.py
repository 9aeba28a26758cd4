"""
Structured logging configuration.

- Development: human-readable colored format
- Production: JSON format (log aggregator compatible)
- Log level: controlled via LOG_LEVEL env variable
- Audit stream: the ``app.audit`` logger can additionally be written to
  its own file via AUDIT_LOG_FILE (one JSON object per line)

Every record emitted while a request is active is stamped with the
request id and the caller's username/role by ``RequestContextFilter``.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

AUDIT_LOGGER_NAME = "app.audit"

# Structured ``extra`` keys copied into JSON output when present
_EXTRA_KEYS = (
    "request_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "username",
    "role",
    "action",
    "audit_kind",
    "details",
)


class RequestContextFilter(logging.Filter):
    """Attach request id and caller identity to records logged inside a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        if getattr(record, "request_id", None) is None:
            record.request_id = getattr(g, "request_id", None)
        caller = getattr(g, "caller", None)
        if caller is not None:
            if getattr(record, "username", None) is None:
                record.username = caller.username
            if getattr(record, "role", None) is None:
                record.role = caller.role.value
        return True


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        for key in _EXTRA_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val
        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Human-readable colored formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",      # cyan
        "INFO": "\033[32m",       # green
        "WARNING": "\033[33m",    # yellow
        "ERROR": "\033[31m",      # red
        "CRITICAL": "\033[35m",   # magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.now().strftime("%H:%M:%S")
        who = getattr(record, "username", None)
        who_str = f" <{who}>" if who else ""
        duration = getattr(record, "duration_ms", None)
        dur_str = f" [{duration:.0f}ms]" if duration is not None else ""
        base = (
            f"{color}{ts} {record.levelname:<8}{self.RESET} "
            f"{record.name}{who_str}: {record.getMessage()}{dur_str}"
        )
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


def _configure_audit_file(path: str, level: int) -> None:
    audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
    for existing in list(audit_logger.handlers):
        if getattr(existing, "_audit_file", False):
            audit_logger.removeHandler(existing)
            existing.close()
    handler = logging.FileHandler(path, encoding="utf-8")
    handler._audit_file = True
    handler.setFormatter(JSONFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)
    audit_logger.addHandler(handler)


def configure_logging(app):
    """
    Set up structured logging for the Flask app.

    Reads LOG_LEVEL from env (default: DEBUG in dev, INFO in prod).
    Development  → ReadableFormatter on stderr
    Production   → JSONFormatter on stderr
    AUDIT_LOG_FILE (optional) → app.audit records also appended as JSON lines
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    formatter = JSONFormatter() if is_prod else ReadableFormatter()

    # Root handler (single stream handler to avoid duplication)
    root = logging.getLogger()
    for existing in list(root.handlers):
        if getattr(existing, "_app_stream", False):
            root.removeHandler(existing)
    handler = logging.StreamHandler(sys.stderr)
    handler._app_stream = True
    handler.setFormatter(formatter)
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    # Quieten noisy libraries
    for noisy in ("urllib3", "werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    audit_file = app.config.get("AUDIT_LOG_FILE")
    if audit_file:
        _configure_audit_file(audit_file, logging.INFO)

    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s audit_file=%s",
                        level_name, "JSON" if is_prod else "readable", audit_file or "-")
