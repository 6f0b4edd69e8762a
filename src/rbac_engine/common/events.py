"""Named engine events (``rbac.provision.step``, ``rbac.audit.finding``, ...)."""

from __future__ import annotations

import logging
from typing import Any


class EventLogger:
    """Log records tagged with a dotted event name and a structured payload.

    Each engine component works on a :meth:`child` of the root emitter, so an
    auditor's ``finding`` event is logged as ``rbac.audit.finding``.
    """

    def __init__(self, logger: logging.Logger, *, namespace: str = "") -> None:
        self._logger = logger
        self._namespace = namespace.rstrip(".")

    def _qualify(self, name: str) -> str:
        return f"{self._namespace}.{name}" if self._namespace else name

    def child(self, component: str) -> "EventLogger":
        return EventLogger(self._logger, namespace=self._qualify(component))

    def emit(self, name: str, *, message: str | None = None, level: int = logging.INFO, **data: Any) -> None:
        event = self._qualify(name)
        extra: dict[str, Any] = {"event": event}
        if data:
            extra["data"] = data
        self._logger.log(level, message or event, extra=extra)


__all__ = ["EventLogger"]
