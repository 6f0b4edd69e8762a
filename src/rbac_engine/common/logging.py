"""Log output for engine runs: one handler on the ``rbac_engine`` logger.

Records emitted through :class:`EventLogger` carry an ``event`` name such as
``rbac.audit.finding`` and an optional ``data`` payload. Both formats write to
stderr so command results on stdout stay machine-readable.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, Any

from rbac_engine.common.events import EventLogger

LOGGER_NAME = "rbac_engine"
EVENT_NAMESPACE = "rbac"
LOG_FORMATS = ("text", "ndjson")


def _timestamp(record: logging.LogRecord) -> str:
    moment = datetime.fromtimestamp(record.created, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _event(record: logging.LogRecord) -> str:
    return getattr(record, "event", None) or f"{EVENT_NAMESPACE}.log"


class NdjsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 - matches logging.Formatter API
        payload: dict[str, Any] = {
            "ts": _timestamp(record),
            "level": record.levelname.lower(),
            "event": _event(record),
            "message": record.getMessage(),
        }
        data = getattr(record, "data", None)
        if data:
            payload["data"] = data
        return json.dumps(payload, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """``[ts] LEVEL event: message (key=value, ...)``"""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 - matches logging.Formatter API
        line = f"[{_timestamp(record)}] {record.levelname} {_event(record)}: {record.getMessage()}"
        data = getattr(record, "data", None)
        if data:
            line += " (" + ", ".join(f"{key}={data[key]}" for key in sorted(data)) + ")"
        return line


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def configure_logging(
    *,
    log_format: str = "text",
    log_level: int | str = logging.INFO,
    stream: IO[str] | None = None,
) -> EventLogger:
    """Route the package logger to ``stream`` (stderr by default) and return the root emitter."""

    normalized = (log_format or "text").strip().lower()
    if normalized not in LOG_FORMATS:
        raise ValueError(f"log_format must be one of: {', '.join(LOG_FORMATS)}")
    level = _resolve_level(log_level)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(NdjsonFormatter() if normalized == "ndjson" else TextFormatter())

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers = [handler]
    logger.propagate = False
    return get_event_logger()


def get_event_logger() -> EventLogger:
    """Root ``rbac`` emitter on the package logger, leaving handlers as they are."""

    return EventLogger(logging.getLogger(LOGGER_NAME), namespace=EVENT_NAMESPACE)


__all__ = [
    "EVENT_NAMESPACE",
    "LOGGER_NAME",
    "LOG_FORMATS",
    "EventLogger",
    "configure_logging",
    "get_event_logger",
]
