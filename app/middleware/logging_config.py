"""
Structured logging configuration.

Every record emitted while a request is being served is stamped with the
request id and the acting user, so service-level messages ("Work item 12
created", "AI budget refused") can be correlated with the request log line
written by the timing middleware.

- Development: one readable line per record, request id in brackets
- Production: one JSON object per record
- LOG_LEVEL overrides the default level (DEBUG in dev, INFO in prod)
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

_CONTEXT_KEYS = ("request_id", "user_id")
_EXTRA_KEYS = _CONTEXT_KEYS + (
    "method", "path", "status", "duration_ms", "remote_addr", "team_id", "workspace_id",
)

_LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
_RESET = "\033[0m"

QUIET_LOGGERS = ("urllib3", "httpx", "werkzeug", "sqlalchemy.engine", "anthropic", "openai")


class RequestContextFilter(logging.Filter):
    """Copy request_id / current user from ``flask.g`` onto the record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = g.get("request_id")
            if getattr(record, "user_id", None) is None:
                record.user_id = g.get("current_user_id")
        return True


class JSONFormatter(logging.Formatter):
    """One JSON document per record, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update({
            key: getattr(record, key) for key in _EXTRA_KEYS
            if getattr(record, key, None) is not None
        })
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line format for local development."""

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.use_color:
            level = f"{_LEVEL_COLORS.get(record.levelno, '')}{level}{_RESET}"

        request_id = getattr(record, "request_id", None)
        tag = f" [{request_id}]" if request_id else ""
        duration = getattr(record, "duration_ms", None)
        suffix = f" ({duration:.0f}ms)" if duration is not None else ""

        line = f"{ts} {level}{tag} {record.name}: {record.getMessage()}{suffix}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger.

    Called first in the app factory; calling it again (one app per test
    session, several in some tests) replaces the handler rather than stacking.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(
        JSONFormatter() if is_prod else ReadableFormatter(use_color=sys.stderr.isatty())
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "json" if is_prod else "readable")
