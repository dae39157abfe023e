"""
Structured logging configuration.

- Development: human-readable colored format; repair logs carry the table
  and backfill mode they touched
- Production: JSON format (log aggregator compatible)
- Log level: LOG_LEVEL env variable; TENANCY_LOG_LEVEL overrides it for the
  remediation services only
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# ``extra=`` keys forwarded into JSON records
_CONTEXT_FIELDS = (
    "request_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "actor_user_id",
    "tenant_id",
    "table",
    "record_id",
    "event_type",
    "mode",
)

SERVICES_LOGGER = "app.services"


class JSONFormatter(logging.Formatter):
    """One JSON object per line for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        for key in _CONTEXT_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line formatter for development."""

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

        tags = []
        table = getattr(record, "table", None)
        if table:
            tags.append(f"<{table}>")
        mode = getattr(record, "mode", None)
        if mode:
            tags.append(f"[{mode}]")
        duration = getattr(record, "duration_ms", None)
        suffix = f" [{duration:.0f}ms]" if duration is not None else ""

        prefix = " ".join(tags)
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: "
        if prefix:
            line += prefix + " "
        line += record.getMessage() + suffix
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    Development / testing → ReadableFormatter, DEBUG by default
    Production            → JSONFormatter, INFO by default
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())

    root = logging.getLogger()
    # app factory runs once per test session and per CLI call; avoid stacking handlers
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    services_level = os.getenv("TENANCY_LOG_LEVEL")
    if services_level:
        logging.getLogger(SERVICES_LOGGER).setLevel(
            getattr(logging, services_level.upper(), level)
        )

    for noisy in ("werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    if not is_testing:
        app.logger.info(
            "Logging configured: level=%s format=%s",
            level_name, "JSON" if is_prod else "readable",
        )
