"""
Structured logging configuration.

Production logs are JSON lines; development and tests get a compact
readable line. Workflow ids attached with ``extra=`` (actor, document,
notification, failure kind) are rendered in both formats so a single
transition can be followed across engine, fan-out and audit records.

Environment:
    LOG_LEVEL   DEBUG / INFO / ... (default DEBUG outside production)
    LOG_FORMAT  "json" or "readable" to override the per-environment default
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

REQUEST_FIELDS = ("request_id", "method", "path", "status", "duration_ms")
WORKFLOW_FIELDS = ("actor_id", "document_id", "notification_id", "failure_kind")


def _collect(record, fields):
    return {key: getattr(record, key) for key in fields if getattr(record, key, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_collect(record, REQUEST_FIELDS))
        entry.update(_collect(record, WORKFLOW_FIELDS))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``12:00:01 WARNING  opsflow.services.notification: msg [document=4 failure_kind=delivery]``"""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{ts} {record.levelname:<8} {record.name}: {record.getMessage()}"

        context = _collect(record, WORKFLOW_FIELDS)
        if context:
            pairs = " ".join(f"{k.removesuffix('_id')}={v}" for k, v in context.items())
            line += f" [{pairs}]"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" ({duration:.0f}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger for ``app``."""
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)
    fmt = os.getenv("LOG_FORMAT", "json" if is_prod else "readable").lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())
    handler.setLevel(level)

    # Repeated app creation (tests) must not stack handlers
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine", "redis"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
