"""Upgrade planning, submission and progress endpoints."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from upgrader.core.exceptions import VersionNotFound
from upgrader.core.logging import get_logger
from upgrader.db import repositories as repo
from upgrader.db.session import get_session
from upgrader.execution import runner
from upgrader.steps.catalog import load_default_registry
from upgrader.steps.tasks import describe

logger = get_logger(__name__)
router = APIRouter(prefix="/upgrades", tags=["upgrades"])


# -------------------------------------------------------------------
# Schemas
# -------------------------------------------------------------------

class StepOut(BaseModel):
    version: str
    source: str
    tasks: list[dict[str, Any]]
    pre_upgrade_message: Optional[str] = None
    post_upgrade_message: Optional[str] = None


class PlanResponse(BaseModel):
    current_version: Optional[str] = None
    target_version: str
    steps: list[StepOut]


class RunSubmitRequest(BaseModel):
    target_version: Optional[str] = None


class RunSubmitResponse(BaseModel):
    run_id: str
    status: str


class TaskLogOut(BaseModel):
    version: str
    task_index: int
    label: str
    kind: str
    status: str
    error: Optional[str] = None


class RunStatusResponse(BaseModel):
    run_id: str
    status: str
    from_version: Optional[str] = None
    target_version: str
    current_version: Optional[str] = None
    current_task: Optional[str] = None
    progress_pct: int
    failed_index: Optional[int] = None
    failed_label: Optional[str] = None
    error: Optional[str] = None
    warnings: list[dict[str, Any]]
    tasks: list[TaskLogOut]


# -------------------------------------------------------------------
# Endpoints
# -------------------------------------------------------------------

@router.get("/versions")
def list_versions() -> dict:
    """Registered versions and the version the database is at."""
    registry = load_default_registry()
    return {
        "current_version": runner.current_version(),
        "versions": registry.versions(),
    }


@router.get("/plan", response_model=PlanResponse)
def get_plan(target: Optional[str] = None, current: Optional[str] = None) -> PlanResponse:
    """Steps and tasks an upgrade to *target* would run."""
    registry = load_default_registry()
    target = target or registry.latest()
    if target is None:
        raise HTTPException(status_code=404, detail="No upgrade steps registered")
    if current is None:
        current = runner.current_version()
    try:
        steps = runner.plan(target, current, registry=registry)
    except VersionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))

    return PlanResponse(
        current_version=current,
        target_version=target,
        steps=[
            StepOut(
                version=s.version,
                source=s.source,
                tasks=[describe(t) for t in s.tasks],
                pre_upgrade_message=s.pre_upgrade_message,
                post_upgrade_message=s.post_upgrade_message,
            )
            for s in steps
        ],
    )


@router.post("/runs", response_model=RunSubmitResponse)
def submit_run(req: RunSubmitRequest) -> RunSubmitResponse:
    """Queue an upgrade run."""
    registry = load_default_registry()
    target = req.target_version or registry.latest()
    if target is None or target not in registry:
        raise HTTPException(status_code=404, detail=f"Unknown version {target}")

    session = get_session()
    try:
        run = repo.create_run(
            session,
            target_version=target,
            from_version=repo.get_schema_version(session),
        )

        # Attempt to enqueue via RQ; gracefully degrade if Redis unavailable
        try:
            from upgrader.jobs.queue import get_queue
            q = get_queue()
            q.enqueue("upgrader.jobs.tasks.run_upgrade_job", run.id, job_timeout=-1)
            logger.info("upgrade_run_enqueued", run_id=run.id)
        except Exception:
            logger.warning("redis_unavailable_running_sync", run_id=run.id)
            # Fallback: run in-process without the advisory lock
            runner.upgrade(target, run_id=run.id, registry=registry)

        # The inline run committed through its own session
        session.refresh(run)
        return RunSubmitResponse(run_id=run.id, status=run.status)
    finally:
        session.close()


@router.get("/runs/{run_id}", response_model=RunStatusResponse)
def run_status(run_id: str) -> RunStatusResponse:
    """Progress, warnings and per-task outcomes of a run."""
    session = get_session()
    try:
        run = repo.get_run(session, run_id=run_id)
        if run is None:
            raise HTTPException(status_code=404, detail="Run not found")

        return RunStatusResponse(
            run_id=run.id,
            status=run.status,
            from_version=run.from_version,
            target_version=run.target_version,
            current_version=run.current_version,
            current_task=run.current_task,
            progress_pct=run.progress_pct,
            failed_index=run.failed_index,
            failed_label=run.failed_label,
            error=run.error,
            warnings=repo.run_warnings(run),
            tasks=[
                TaskLogOut(
                    version=t.version,
                    task_index=t.task_index,
                    label=t.label,
                    kind=t.kind,
                    status=t.status,
                    error=t.error,
                )
                for t in repo.task_log(session, run_id=run.id)
            ],
        )
    finally:
        session.close()
