"""
Structured logging configuration.

- Development: readable lines, coloured on a terminal, engine context appended
- Production: one JSON object per line
- Log level: LOG_LEVEL env variable

Engine code logs through ``logging.getLogger(__name__)`` and passes context
with ``extra=``; only the fields below are serialised.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Set by middleware.timing for every request
REQUEST_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr", "request_id", "actor")

# Set by the generator, workflow, store retry and audit dispatch
ENGINE_FIELDS = ("event_type", "program_year", "application_id", "beneficiary_id", "job_name")

_ENGINE_LABELS = {
    "event_type": "event",
    "program_year": "year",
    "application_id": "application",
    "beneficiary_id": "beneficiary",
    "job_name": "job",
}


class JSONFormatter(logging.Formatter):
    """JSON log formatter for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in REQUEST_FIELDS + ENGINE_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """One line per record: time, level, logger, message, engine context."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.use_color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"

        context = " ".join(
            f"{_ENGINE_LABELS[key]}={getattr(record, key)}"
            for key in ENGINE_FIELDS
            if getattr(record, key, None) is not None
        )
        line = f"{ts} {level} {record.name}: {record.getMessage()}"
        if context:
            line += f" ({context})"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install a single root handler on stderr.

    JSON outside development and testing, readable otherwise.  Level from
    LOG_LEVEL (default DEBUG in development, INFO elsewhere).
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    if is_prod:
        formatter = JSONFormatter()
    else:
        formatter = ReadableFormatter(use_color=sys.stderr.isatty())

    # tests call create_app more than once
    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine", "alembic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "JSON" if is_prod else "readable")
