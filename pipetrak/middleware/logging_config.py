"""
Structured logging configuration.

Production writes one JSON object per line; development and tests write a
short coloured line. LOG_FORMAT and LOG_LEVEL in the app config override the
environment defaults.

Services log with ``extra={...}``. Fields listed in ``_EXTRA_FIELDS`` are
lifted into the JSON line; the readable format appends the progress scope
(component, weld, drawing) it finds on the record.
"""

import json
import logging
import sys
from datetime import datetime, timezone

_EXTRA_FIELDS = (
    "method",
    "path",
    "status",
    "duration_ms",
    "request_id",
    "actor",
    "event_type",
    "project_id",
    "component_id",
    "field_weld_id",
    "original_weld_id",
    "welder_id",
    "drawing_id",
    "parent_type",
    "parent_id",
    "milestone_name",
    "depth",
)

# (record attribute, label) shown by the readable formatter
_READABLE_SCOPE = (
    ("component_id", "component"),
    ("field_weld_id", "weld"),
    ("drawing_id", "drawing"),
    ("actor", "by"),
)

_QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "alembic")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        entry.update(
            (key, getattr(record, key))
            for key in _EXTRA_FIELDS
            if getattr(record, key, None) is not None
        )
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        scope = " ".join(
            f"{label}={getattr(record, attr)}"
            for attr, label in _READABLE_SCOPE
            if getattr(record, attr, None) is not None
        )
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"
        if scope:
            line += f" [{scope}]"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" ({duration:.0f}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _resolve_format(app) -> str:
    fmt = (app.config.get("LOG_FORMAT") or "").lower()
    if fmt in ("json", "readable"):
        return fmt
    is_prod = not app.config.get("DEBUG") and not app.config.get("TESTING")
    return "json" if is_prod else "readable"


def configure_logging(app):
    """Install a single stderr handler on the root logger."""
    fmt = _resolve_format(app)
    level_name = (app.config.get("LOG_LEVEL") or ("INFO" if fmt == "json" else "DEBUG")).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())
    handler.setLevel(level)

    root = logging.getLogger()
    # create_app runs once per test session and once per worker
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING"):
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
