"""
logging_config.py — Log formatting for the dispatch engine.

Two output modes, chosen by ENVIRONMENT:
    • production  → one JSON object per line, dispatch fields at top level
    • otherwise   → coloured single-line console output

Every per-channel delivery runs in its own asyncio task, and asyncio copies
the current context into each task it creates. The dispatch context set by
the engine (notification id, channel) therefore stays attached to that
task's log lines without being passed around.

Usage:
    from notification_engine.app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Retry scheduled", extra={"channel": "sms", "attempt": 2})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from notification_engine.app.core.config import Settings, settings as default_settings

_dispatch_context: ContextVar[Dict[str, Any]] = ContextVar(
    "dispatch_context", default={}
)

# LogRecord attributes promoted into structured output when present
DISPATCH_FIELDS = (
    "notification_id", "channel", "attempt", "delay_seconds", "outcome",
    "queue_length", "duration_ms", "status_code", "endpoint",
)

_PACKAGE_PREFIX = "notification_engine.app."


def set_dispatch_context(**kwargs: Any) -> None:
    """Merge fields into the dispatch context of the running task."""
    _dispatch_context.set({**_dispatch_context.get(), **kwargs})


def get_dispatch_context() -> Dict[str, Any]:
    return _dispatch_context.get()


def _dispatch_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Task context overlaid with the record's own ``extra`` fields."""
    fields = dict(get_dispatch_context())
    for key in DISPATCH_FIELDS:
        value = getattr(record, key, None)
        if value is not None:
            fields[key] = value
    return fields


class JSONFormatter(logging.Formatter):
    """
    One JSON document per record.

    Dispatch fields sit beside ``message`` so a log pipeline can filter on
    ``channel`` or ``notification_id`` directly.
    """

    def __init__(self, service: Optional[str] = None):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.service:
            entry["service"] = self.service
        entry.update(_dispatch_fields(record))

        if record.exc_info and record.exc_info[1]:
            exc = record.exc_info[1]
            entry["error"] = {"type": type(exc).__name__, "detail": str(exc)}

        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    """
    Console output for development::

        12:00:01 WARNING  [NTF-1A2B/sms #2] notifications.engine: ...
    """

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        fields = _dispatch_fields(record)

        tag = ""
        if fields.get("notification_id"):
            tag = fields["notification_id"]
            if fields.get("channel"):
                tag += f"/{fields['channel']}"
            if fields.get("attempt"):
                tag += f" #{fields['attempt']}"
            tag = f" [{tag}]"

        name = record.name
        if name.startswith(_PACKAGE_PREFIX):
            name = name[len(_PACKAGE_PREFIX):]

        line = (
            f"{color}{self.formatTime(record, '%H:%M:%S')} "
            f"{record.levelname:<8}{self.RESET}{tag} {name}: {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[1]:
            exc = record.exc_info[1]
            line += f"\n    ↳ {type(exc).__name__}: {exc}"
        return line


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Install a single stdout handler on the root logger."""
    settings = settings or default_settings
    root = logging.getLogger()
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    root.setLevel(level if isinstance(level, int) else logging.INFO)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        JSONFormatter(service=settings.APP_NAME)
        if settings.is_production
        else PrettyFormatter()
    )
    root.addHandler(handler)

    for noisy in ("uvicorn.access", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
