"""
Logging setup for the local client.

Console output is readable in development and JSON otherwise. A desk
install has nobody watching stderr, so LOG_FILE adds a rotating file
under the instance folder. Every record is stamped with the signed-in
user and the sync state when an app context is active.

Config keys: LOG_LEVEL, LOG_FORMAT ("json" | "readable"), LOG_FILE,
LOG_FILE_MAX_BYTES, LOG_FILE_BACKUPS.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from flask import current_app, has_app_context

_EXTRA_FIELDS = (
    "actor",
    "sync_state",
    "collection",
    "record_id",
    "action",
    "method",
    "path",
    "status",
    "duration_ms",
)

_QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine")


class ClientStateFilter(logging.Filter):
    """Attach ``actor`` and ``sync_state`` unless the caller already set them."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_app_context():
            return True
        ctx = current_app.extensions.get("shiftbook")
        if ctx is None:
            return True
        if getattr(record, "actor", None) is None:
            user = ctx.session.current_user
            record.actor = user["username"] if user else None
        if getattr(record, "sync_state", None) is None:
            record.sync_state = ctx.sync.state
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
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
    """Colored single-line output for a developer terminal."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"

        tags = []
        actor = getattr(record, "actor", None)
        if actor:
            tags.append(f"@{actor}")
        state = getattr(record, "sync_state", None)
        if state and state != "idle":
            tags.append(f"<{state}>")
        tag_str = f" {' '.join(tags)}" if tags else ""

        duration = getattr(record, "duration_ms", None)
        dur_str = f" [{duration:.0f}ms]" if duration is not None else ""

        line = f"{stamp} {level} {record.name}{tag_str}: {record.getMessage()}{dur_str}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _resolve_format(app) -> str:
    fmt = (app.config.get("LOG_FORMAT") or "").lower()
    if fmt in ("json", "readable"):
        return fmt
    if app.config.get("DEBUG") or app.config.get("TESTING"):
        return "readable"
    return "json"


def _file_handler(app, level) -> RotatingFileHandler | None:
    path = app.config.get("LOG_FILE")
    if not path:
        return None
    if not os.path.isabs(path):
        path = os.path.join(app.instance_path, path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    handler = RotatingFileHandler(
        path,
        maxBytes=app.config.get("LOG_FILE_MAX_BYTES", 1_000_000),
        backupCount=app.config.get("LOG_FILE_BACKUPS", 3),
        encoding="utf-8",
    )
    # Files are read by support staff and log shippers alike
    handler.setFormatter(JSONFormatter())
    handler.setLevel(level)
    return handler


def configure_logging(app) -> None:
    """Install console (and optionally file) handlers on the root logger."""
    testing = app.config.get("TESTING", False)
    default_level = "DEBUG" if app.config.get("DEBUG") or testing else "INFO"
    level_name = str(app.config.get("LOG_LEVEL") or default_level).upper()
    level = getattr(logging, level_name, logging.INFO)
    fmt = _resolve_format(app)

    console = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        console.setFormatter(JSONFormatter())
    else:
        console.setFormatter(ReadableFormatter(color=sys.stderr.isatty()))

    handlers = [console]
    file_handler = _file_handler(app, level)
    if file_handler is not None:
        handlers.append(file_handler)

    state_filter = ClientStateFilter()
    root = logging.getLogger()
    # create_app runs once per test; replace rather than stack handlers
    for old in list(root.handlers):
        root.removeHandler(old)
        old.close()
    for handler in handlers:
        handler.setLevel(level)
        handler.addFilter(state_filter)
        root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info(
            "Logging configured: level=%s format=%s file=%s",
            level_name, fmt, file_handler.baseFilename if file_handler else "-",
        )
