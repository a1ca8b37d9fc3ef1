"""Explicit per-run context handed to every task."""

from __future__ import annotations

import datetime
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from sqlalchemy.engine import Connection

from upgrader.core.config import Settings, get_settings
from upgrader.core.exceptions import PartialStateWarning
from upgrader.core.logging import get_logger
from upgrader.core.metrics import UPGRADE_WARNINGS
from upgrader.execution import sql
from upgrader.execution.schema import SchemaEditor, SchemaInspector

logger = get_logger(__name__)


class ProgressSink(Protocol):
    def __call__(self, index: int, total: int, label: str) -> None: ...


def no_progress(index: int, total: int, label: str) -> None:
    return None


def file_created_at(path: str) -> datetime.datetime | None:
    """Creation (inode change) time of *path*, or None if it is not a file."""
    if not os.path.isfile(path):
        return None
    return datetime.datetime.fromtimestamp(os.path.getctime(path))


def _now() -> datetime.datetime:
    return datetime.datetime.now().replace(microsecond=0)


@dataclass
class UpgradeContext:
    """State shared by the tasks of one version while it is applied.

    ``connection`` is set by the executor for the duration of each task
    and points at that task's own transaction.
    """

    version: str
    settings: Settings = field(default_factory=get_settings)
    progress: ProgressSink = no_progress
    warnings: list[PartialStateWarning] = field(default_factory=list)
    clock: Callable[[], datetime.datetime] = _now
    file_created_at: Callable[[str], datetime.datetime | None] = file_created_at
    connection: Connection | None = None
    current_label: str = ""

    def now(self) -> datetime.datetime:
        return self.clock()

    def _conn(self) -> Connection:
        if self.connection is None:
            raise RuntimeError("UpgradeContext has no active connection")
        return self.connection

    def execute(self, statement: str, params: sql.Params | None = None):
        """Run a typed-parameter query on the current task's transaction."""
        return sql.execute(self._conn(), statement, params)

    @property
    def inspector(self) -> SchemaInspector:
        return SchemaInspector(self._conn())

    @property
    def editor(self) -> SchemaEditor:
        return SchemaEditor(self._conn())

    def warn(self, message: str, **details: Any) -> None:
        """Record a non-fatal partial-state warning for the current task."""
        warning = PartialStateWarning(
            version=self.version, task_label=self.current_label, message=message
        )
        self.warnings.append(warning)
        UPGRADE_WARNINGS.labels(version=self.version).inc()
        logger.warning(
            "partial_state_warning",
            version=self.version,
            task=self.current_label,
            message=message,
            **details,
        )
