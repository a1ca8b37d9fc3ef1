"""Data-access functions for the upgrade ledger."""

from __future__ import annotations

import json
from typing import Any

from sqlalchemy import desc
from sqlalchemy.orm import Session

from upgrader.db.models import SchemaState, TaskLog, UpgradeRun

SCHEMA_VERSION_KEY = "schema_version"


# ---------------------------------------------------------------------------
# Schema state
# ---------------------------------------------------------------------------

def get_schema_version(session: Session) -> str | None:
    """Return the last fully applied version, or None for a fresh ledger."""
    state = session.get(SchemaState, SCHEMA_VERSION_KEY)
    return state.value if state else None


def set_schema_version(session: Session, version: str) -> None:
    state = session.get(SchemaState, SCHEMA_VERSION_KEY)
    if state is None:
        session.add(SchemaState(key=SCHEMA_VERSION_KEY, value=version))
    else:
        state.value = version
    session.commit()


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------

def create_run(
    session: Session,
    *,
    target_version: str,
    from_version: str | None = None,
) -> UpgradeRun:
    run = UpgradeRun(target_version=target_version, from_version=from_version)
    session.add(run)
    session.commit()
    session.refresh(run)
    return run


def get_run(session: Session, *, run_id: str) -> UpgradeRun | None:
    return session.query(UpgradeRun).filter_by(id=run_id).first()


def list_runs(session: Session, *, limit: int = 20) -> list[UpgradeRun]:
    q = session.query(UpgradeRun).order_by(desc(UpgradeRun.created_at)).limit(limit)
    return list(q.all())


def update_run(
    session: Session,
    *,
    run_id: str,
    status: str | None = None,
    current_version: str | None = None,
    current_task: str | None = None,
    progress_pct: int | None = None,
    failed_index: int | None = None,
    failed_label: str | None = None,
    error: str | None = None,
    warnings: list[dict[str, Any]] | None = None,
) -> UpgradeRun | None:
    run = get_run(session, run_id=run_id)
    if run is None:
        return None
    if status is not None:
        run.status = status
    if current_version is not None:
        run.current_version = current_version
    if current_task is not None:
        run.current_task = current_task
    if progress_pct is not None:
        run.progress_pct = progress_pct
    if failed_index is not None:
        run.failed_index = failed_index
    if failed_label is not None:
        run.failed_label = failed_label
    if error is not None:
        run.error = error
    if warnings is not None:
        run.warnings = json.dumps(warnings)
    session.commit()
    session.refresh(run)
    return run


def run_warnings(run: UpgradeRun) -> list[dict[str, Any]]:
    return json.loads(run.warnings) if run.warnings else []


# ---------------------------------------------------------------------------
# Task log
# ---------------------------------------------------------------------------

def log_task(
    session: Session,
    *,
    version: str,
    task_index: int,
    label: str,
    kind: str,
    status: str,
    run_id: str | None = None,
    error: str | None = None,
) -> TaskLog:
    entry = TaskLog(
        run_id=run_id,
        version=version,
        task_index=task_index,
        label=label,
        kind=kind,
        status=status,
        error=error,
    )
    session.add(entry)
    session.commit()
    session.refresh(entry)
    return entry


def completed_task_indices(session: Session, *, version: str) -> set[int]:
    """Indices of tasks of *version* that have committed successfully."""
    rows = (
        session.query(TaskLog.task_index)
        .filter_by(version=version, status="succeeded")
        .all()
    )
    return {row[0] for row in rows}


def task_log(
    session: Session, *, run_id: str | None = None, version: str | None = None
) -> list[TaskLog]:
    q = session.query(TaskLog).order_by(TaskLog.id)
    if run_id:
        q = q.filter_by(run_id=run_id)
    if version:
        q = q.filter_by(version=version)
    return list(q.all())
