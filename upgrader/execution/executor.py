"""Sequential task executor.

Tasks run one at a time, each inside its own transaction that is
committed before the next task starts.  The first failure stops the
run; nothing is retried automatically.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import AbstractSet, Callable, Sequence, Union

from sqlalchemy.engine import Connection, Engine
from typing_extensions import assert_never

from upgrader.core.exceptions import PartialStateWarning, TaskExecutionError
from upgrader.core.logging import get_logger
from upgrader.core.metrics import UPGRADE_TASK_COUNT, UPGRADE_TASK_DURATION
from upgrader.execution import sql
from upgrader.execution.context import UpgradeContext
from upgrader.execution.schema import SchemaEditor, SchemaInspector, column_matches
from upgrader.steps.tasks import AlterColumn, CustomAction, RunScript, Task

logger = get_logger(__name__)


@dataclass
class Success:
    completed: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    warnings: list[PartialStateWarning] = field(default_factory=list)

    ok = True


@dataclass
class FailedAt:
    index: int
    label: str
    cause: BaseException
    completed: list[int] = field(default_factory=list)
    warnings: list[PartialStateWarning] = field(default_factory=list)

    ok = False

    @property
    def error(self) -> TaskExecutionError:
        return TaskExecutionError(self.index, self.label, self.cause)


RunResult = Union[Success, FailedAt]

TaskHook = Callable[[int, Task, BaseException | None], None]


# -------------------------------------------------------------------
# Per-kind handlers
# -------------------------------------------------------------------

def _run_script(task: RunScript, ctx: UpgradeContext, conn: Connection) -> None:
    script = sql.load_script(
        ctx.settings.sql_script_dir,
        task.path,
        version=ctx.version,
        dialect=conn.dialect.name,
    )
    count = sql.run_script(conn, script)
    logger.info("script_executed", path=task.path, statements=count)


def _alter_column(task: AlterColumn, ctx: UpgradeContext, conn: Connection) -> None:
    inspector = SchemaInspector(conn)
    editor = SchemaEditor(conn)
    spec = task.spec

    existing = inspector.get_column(task.table, task.column)
    if existing is None:
        editor.add_column(task.table, task.column, spec)
        return
    if column_matches(existing, spec, conn.dialect):
        logger.info("column_already_matches", table=task.table, column=task.column)
        return

    if spec.required and spec.default is not None:
        filled = editor.fill_nulls(task.table, task.column, spec.default_value())
        if filled:
            logger.info(
                "column_nulls_filled", table=task.table, column=task.column, rows=filled
            )
    editor.alter_column(task.table, task.column, spec, existing)


def _custom_action(task: CustomAction, ctx: UpgradeContext, conn: Connection) -> None:
    task.func(ctx, *task.args, **dict(task.kwargs))


def execute_task(task: Task, ctx: UpgradeContext, conn: Connection) -> None:
    """Apply one task on *conn*."""
    if isinstance(task, RunScript):
        _run_script(task, ctx, conn)
    elif isinstance(task, AlterColumn):
        _alter_column(task, ctx, conn)
    elif isinstance(task, CustomAction):
        _custom_action(task, ctx, conn)
    else:
        assert_never(task)


# -------------------------------------------------------------------
# Executor
# -------------------------------------------------------------------

class TaskExecutor:
    """Drains an ordered task list against *engine*."""

    def __init__(self, engine: Engine, on_task_done: TaskHook | None = None) -> None:
        self.engine = engine
        self.on_task_done = on_task_done

    def run(
        self,
        tasks: Sequence[Task],
        ctx: UpgradeContext,
        skip: AbstractSet[int] = frozenset(),
    ) -> RunResult:
        """Run *tasks* in order, skipping indices in *skip*.

        Returns Success, or FailedAt for the first task that raised.
        """
        total = len(tasks)
        completed: list[int] = []
        skipped: list[int] = []
        warnings_before = len(ctx.warnings)

        for index, task in enumerate(tasks):
            if index in skip:
                skipped.append(index)
                logger.info("task_skipped", version=ctx.version, index=index, label=task.label)
                continue

            task_warnings_start = len(ctx.warnings)
            ctx.current_label = task.label
            ctx.progress(index, total, task.label)
            logger.info(
                "task_started",
                version=ctx.version,
                index=index,
                total=total,
                kind=task.kind,
                label=task.label,
            )

            start = time.perf_counter()
            try:
                with self.engine.begin() as conn:
                    ctx.connection = conn
                    execute_task(task, ctx, conn)
            except Exception as exc:
                duration_s = time.perf_counter() - start
                # Rolled back with the task; a retry raises them again
                discarded = ctx.warnings[task_warnings_start:]
                del ctx.warnings[task_warnings_start:]
                UPGRADE_TASK_DURATION.labels(version=ctx.version, kind=task.kind).observe(duration_s)
                UPGRADE_TASK_COUNT.labels(version=ctx.version, kind=task.kind, status="failed").inc()
                logger.error(
                    "task_failed",
                    version=ctx.version,
                    index=index,
                    label=task.label,
                    error=str(exc),
                    discarded_warnings=len(discarded),
                )
                if self.on_task_done is not None:
                    self.on_task_done(index, task, exc)
                return FailedAt(
                    index=index,
                    label=task.label,
                    cause=exc,
                    completed=completed,
                    warnings=ctx.warnings[warnings_before:],
                )
            finally:
                ctx.connection = None

            duration_s = time.perf_counter() - start
            UPGRADE_TASK_DURATION.labels(version=ctx.version, kind=task.kind).observe(duration_s)
            UPGRADE_TASK_COUNT.labels(version=ctx.version, kind=task.kind, status="succeeded").inc()
            logger.info(
                "task_succeeded",
                version=ctx.version,
                index=index,
                label=task.label,
                duration_s=round(duration_s, 3),
            )
            completed.append(index)
            if self.on_task_done is not None:
                self.on_task_done(index, task, None)

        return Success(
            completed=completed,
            skipped=skipped,
            warnings=ctx.warnings[warnings_before:],
        )
