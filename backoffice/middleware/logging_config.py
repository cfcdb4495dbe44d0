"""
Structured logging configuration.

Every record passes through ``RequestContextFilter``, which stamps the
current request id, tenant and user (from ``flask.g``) onto it, so service
code only adds ``event_type`` and whatever ids are specific to the event.

    development / testing → ReadableFormatter  "12:00:01 INFO  backoffice.x [t3 u7]: ..."
    production            → JSONFormatter      one object per line
    LOG_LEVEL             → overrides the level (INFO in production, DEBUG otherwise)
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

CONTEXT_FIELDS = ("request_id", "tenant_id", "user_id")
EVENT_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr", "event_type")

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "alembic")


class RequestContextFilter(logging.Filter):
    """Copy request-scoped ids from ``g`` unless the caller passed them in ``extra``."""

    _SOURCES = {"request_id": "request_id", "tenant_id": "jwt_tenant_id", "user_id": "jwt_user_id"}

    def filter(self, record: logging.LogRecord) -> bool:
        in_request = has_request_context()
        for field, attr in self._SOURCES.items():
            if getattr(record, field, None) is None:
                setattr(record, field, getattr(g, attr, None) if in_request else None)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        for key in CONTEXT_FIELDS + EVENT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured single-line output for a terminal."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    @staticmethod
    def _scope(record) -> str:
        parts = []
        tenant_id = getattr(record, "tenant_id", None)
        user_id = getattr(record, "user_id", None)
        if tenant_id is not None:
            parts.append(f"t{tenant_id}")
        if user_id is not None:
            parts.append(f"u{user_id}")
        return f" [{' '.join(parts)}]" if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        duration = getattr(record, "duration_ms", None)
        timing = f" ({duration:.0f}ms)" if duration is not None else ""
        text = (
            f"{color}{clock} {record.levelname:<8}{self.RESET} "
            f"{record.name}{self._scope(record)}: {record.getMessage()}{timing}"
        )
        if record.exc_info and record.exc_info[0] is not None:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text


def _log_level(production: bool) -> tuple[str, int]:
    name = os.getenv("LOG_LEVEL") or ("INFO" if production else "DEBUG")
    return name.upper(), getattr(logging, name.upper(), logging.INFO)


def configure_logging(app):
    """Replace root handlers with a single stderr handler for *app*."""
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing
    level_name, level = _log_level(production)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging ready (level=%s, %s)", level_name, "json" if production else "readable")
