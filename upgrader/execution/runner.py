"""High-level upgrade operations against the ledger.

``upgrade()`` walks every pending version up to the target, executes its
tasks and records each outcome in ``upgrade_task_log``.  Re-invoking it
after a failure resumes: tasks already logged as succeeded for a version
are skipped, the rest (including the failed one) run again.
"""

from __future__ import annotations

from typing import Any

from upgrader.core.config import Settings, get_settings
from upgrader.core.exceptions import TaskExecutionError
from upgrader.core.logging import bind_run, get_logger, unbind_run
from upgrader.core.metrics import UPGRADE_RUN_COUNT
from upgrader.db import repositories as repo
from upgrader.db.models import UpgradeRun
from upgrader.db.session import get_engine, get_session, init_db
from upgrader.execution.context import ProgressSink, UpgradeContext, no_progress
from upgrader.execution.executor import FailedAt, TaskExecutor
from upgrader.steps.catalog import load_default_registry
from upgrader.steps.registry import StepRegistry, UpgradeStep
from upgrader.steps.tasks import Task

logger = get_logger(__name__)


def _registry(registry: StepRegistry | None) -> StepRegistry:
    return registry if registry is not None else load_default_registry()


def current_version() -> str | None:
    """Last fully applied version recorded in the ledger."""
    init_db()
    session = get_session()
    try:
        return repo.get_schema_version(session)
    finally:
        session.close()


def plan(
    target: str,
    current: str | None = None,
    registry: StepRegistry | None = None,
) -> list[UpgradeStep]:
    """Steps that an upgrade from *current* (default: recorded) to *target* runs."""
    if current is None:
        current = current_version()
    return _pending_steps(_registry(registry), current, target)


def _pending_steps(reg: StepRegistry, current: str | None, target: str) -> list[UpgradeStep]:
    # current=None here means "nothing applied yet", not "look it up"
    return [reg.resolve(v) for v in reg.pending(current, target)]


def upgrade(
    target: str,
    *,
    resume: bool = True,
    progress: ProgressSink | None = None,
    run_id: str | None = None,
    registry: StepRegistry | None = None,
    settings: Settings | None = None,
) -> UpgradeRun:
    """Apply every pending version up to *target*; return the finished run.

    The run is marked ``failed`` (not raised) when a task fails; callers
    inspect ``run.status``.  Unknown targets raise VersionNotFound.
    """
    init_db()
    reg = _registry(registry)
    settings = settings or get_settings()
    session = get_session()

    try:
        from_version = repo.get_schema_version(session)
        steps = _pending_steps(reg, from_version, target)

        if run_id is None:
            run = repo.create_run(session, target_version=target, from_version=from_version)
        else:
            run = repo.get_run(session, run_id=run_id)
            if run is None:
                raise ValueError(f"Upgrade run {run_id} not found")
        bind_run(run.id, target)
        repo.update_run(session, run_id=run.id, status="running")
        logger.info(
            "upgrade_started",
            from_version=from_version,
            versions=[s.version for s in steps],
        )

        total = sum(len(s.tasks) for s in steps)
        offset = 0
        warnings: list[dict[str, Any]] = []

        for step in steps:
            sink = _ledger_progress(session, run.id, step.version, offset, total, progress)
            ctx = UpgradeContext(version=step.version, settings=settings, progress=sink)
            skip = repo.completed_task_indices(session, version=step.version) if resume else set()
            if step.pre_upgrade_message:
                logger.info("pre_upgrade_message", version=step.version, message=step.pre_upgrade_message)

            executor = TaskExecutor(
                get_engine(),
                on_task_done=_ledger_hook(session, run.id, step.version, step.tasks),
            )
            result = executor.run(step.tasks, ctx, skip=skip)
            warnings.extend(w.to_dict() for w in ctx.warnings)

            if isinstance(result, FailedAt):
                error = TaskExecutionError(result.index, result.label, result.cause)
                repo.update_run(
                    session,
                    run_id=run.id,
                    status="failed",
                    current_version=step.version,
                    failed_index=result.index,
                    failed_label=result.label,
                    error=str(error),
                    warnings=warnings,
                )
                UPGRADE_RUN_COUNT.labels(status="failed").inc()
                logger.error(
                    "upgrade_failed",
                    version=step.version,
                    index=result.index,
                    label=result.label,
                    error=str(result.cause),
                )
                return repo.get_run(session, run_id=run.id)

            repo.set_schema_version(session, step.version)
            offset += len(step.tasks)
            repo.update_run(session, run_id=run.id, current_version=step.version)
            if step.post_upgrade_message:
                logger.info("post_upgrade_message", version=step.version, message=step.post_upgrade_message)
            logger.info(
                "version_applied",
                version=step.version,
                completed=len(result.completed),
                skipped=len(result.skipped),
            )

        repo.update_run(
            session,
            run_id=run.id,
            status="succeeded",
            progress_pct=100,
            warnings=warnings,
        )
        UPGRADE_RUN_COUNT.labels(status="succeeded").inc()
        logger.info("upgrade_succeeded", warnings=len(warnings))
        return repo.get_run(session, run_id=run.id)
    finally:
        unbind_run()
        session.close()


def _ledger_progress(
    session, run_id: str, version: str, offset: int, total: int, downstream: ProgressSink | None
) -> ProgressSink:
    """Progress sink that records the current task on the run, then forwards."""
    downstream = downstream or no_progress

    def sink(index: int, step_total: int, label: str) -> None:
        pct = int(100 * (offset + index) / total) if total else 100
        repo.update_run(
            session,
            run_id=run_id,
            current_version=version,
            current_task=label,
            progress_pct=pct,
        )
        downstream(index, step_total, label)

    return sink


def _ledger_hook(session, run_id: str, version: str, tasks: tuple[Task, ...]):
    def on_task_done(index: int, task: Task, exc: BaseException | None) -> None:
        repo.log_task(
            session,
            run_id=run_id,
            version=version,
            task_index=index,
            label=task.label,
            kind=task.kind,
            status="failed" if exc is not None else "succeeded",
            error=str(exc) if exc is not None else None,
        )

    return on_task_done
