"""
Logging setup for the Build Tracker.

Production writes one JSON object per line; development and tests get a
short coloured line. Every record emitted while a request is active is
stamped with the request id and the caller's uid, and the build-domain
keys passed through ``extra`` (guitar, run, outbox event, email
recipient) are carried into both formats. LOG_LEVEL overrides the level.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# ``extra`` keys surfaced by the formatters, in output order
REQUEST_KEYS = ("request_id", "user_uid", "method", "path", "status", "duration_ms", "remote_addr")
DOMAIN_KEYS = ("guitar_id", "run_id", "event_type", "recipient")

_SHORT_NAMES = {
    "guitar_id": "guitar",
    "run_id": "run",
    "event_type": "event",
    "recipient": "to",
}


def record_context(record: logging.LogRecord, keys) -> dict:
    return {k: getattr(record, k) for k in keys if getattr(record, k, None) not in (None, "")}


class RequestContextFilter(logging.Filter):
    """Stamp records with the active request's id and authenticated uid."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = g.get("request_id")
            if getattr(record, "user_uid", None) is None:
                record.user_uid = g.get("jwt_user_id")
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(record_context(record, REQUEST_KEYS))
        entry.update(record_context(record, DOMAIN_KEYS))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``12:04:31 WARNING buildtrack.services.outbox: msg [guitar=.. run=..] 12ms #rid``"""

    LEVEL_COLOURS = {
        logging.DEBUG: "\033[2m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, colour: bool = True):
        super().__init__()
        self.colour = colour

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.colour:
            level = f"{self.LEVEL_COLOURS.get(record.levelno, '')}{level}{self.RESET}"

        parts = [f"{stamp} {level} {record.name}: {record.getMessage()}"]
        domain = record_context(record, DOMAIN_KEYS)
        if domain:
            parts.append("[" + " ".join(f"{_SHORT_NAMES[k]}={v}" for k, v in domain.items()) + "]")
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            parts.append(f"{duration:.0f}ms")
        request_id = getattr(record, "request_id", None)
        if request_id:
            parts.append(f"#{request_id}")

        line = " ".join(parts)
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    JSON in production, readable lines otherwise (uncoloured under test).
    Repeated calls replace the handler instead of stacking another one.
    """
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter(colour=not testing))
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for chatty in ("urllib3", "werkzeug", "sqlalchemy.engine"):
        logging.getLogger(chatty).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging ready (level=%s, %s)", level_name, "json" if production else "readable")
