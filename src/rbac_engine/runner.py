"""Sequential execution of typed operations against a platform."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Iterable

from rbac_engine.common.events import EventLogger
from rbac_engine.exceptions import OperationCancelled, PlatformOperationFailed
from rbac_engine.operations import Operation, render
from rbac_engine.platform.base import Platform


@dataclass(frozen=True)
class Execution:
    statement: str
    changed: bool | None


@dataclass
class OperationRunner:
    """Runs operations one at a time, checking ``cancel_event`` before each.

    With ``dry_run`` set nothing reaches the platform; statements are only
    rendered and recorded.
    """

    platform: Platform
    events: EventLogger
    cancel_event: threading.Event | None = None
    dry_run: bool = False
    executed: list[Execution] = field(default_factory=list)

    def run(self, op: Operation) -> Execution:
        statement = render(op)
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise OperationCancelled("Operation cancelled by caller", statement=statement)

        if self.dry_run:
            execution = Execution(statement, None)
        else:
            try:
                changed = self.platform.execute(op)
            except PlatformOperationFailed as exc:
                self.events.emit(
                    "platform.failed",
                    message=exc.message,
                    level=logging.WARNING,
                    statement=exc.statement or statement,
                )
                raise
            execution = Execution(statement, changed)

        self.events.emit(
            "platform.execute",
            message=statement,
            level=logging.DEBUG,
            changed=execution.changed,
            dry_run=self.dry_run,
        )
        self.executed.append(execution)
        return execution

    def run_all(self, ops: Iterable[Operation]) -> list[Execution]:
        return [self.run(op) for op in ops]


__all__ = ["Execution", "OperationRunner"]
