"""Cross-cutting helpers (logging, events)."""

from rbac_engine.common.events import EventLogger
from rbac_engine.common.logging import configure_logging, get_event_logger

__all__ = ["EventLogger", "configure_logging", "get_event_logger"]
