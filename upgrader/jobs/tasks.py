"""Background upgrade job executed by the RQ worker."""

from __future__ import annotations

from upgrader.core.config import get_settings
from upgrader.core.logging import get_logger
from upgrader.db import repositories as repo
from upgrader.db.session import get_session, init_db
from upgrader.execution.runner import upgrade
from upgrader.jobs.queue import (
    LockHeartbeat,
    get_upgrade_lock,
    heartbeat_interval,
    release_upgrade_lock,
)

logger = get_logger(__name__)


class UpgradeLocked(RuntimeError):
    """Another upgrade run holds the advisory lock."""


def run_upgrade_job(run_id: str, lock=None, heartbeat_every: float | None = None) -> str:
    """Run the queued upgrade *run_id* under the advisory lock.

    The lock is renewed every *heartbeat_every* seconds (default: a third
    of the configured lock timeout) until the run finishes.

    Returns the final run status.  Raises UpgradeLocked when another run
    is in progress; the run is marked failed so it can be re-submitted.
    """
    init_db()
    session = get_session()
    try:
        run = repo.get_run(session, run_id=run_id)
        if run is None:
            logger.error("upgrade_run_not_found", run_id=run_id)
            return "missing"
        target = run.target_version
    finally:
        session.close()

    lock = lock if lock is not None else get_upgrade_lock()
    if not lock.acquire():
        session = get_session()
        try:
            repo.update_run(
                session,
                run_id=run_id,
                status="failed",
                error="Another upgrade is already running",
            )
        finally:
            session.close()
        logger.warning("upgrade_lock_busy", run_id=run_id)
        raise UpgradeLocked(f"Upgrade lock held; run {run_id} not started")

    try:
        logger.info("upgrade_job_started", run_id=run_id, target=target)
        interval = heartbeat_every or heartbeat_interval(get_settings().upgrade_lock_timeout)
        with LockHeartbeat(lock, interval):
            finished = upgrade(target, run_id=run_id)
        return finished.status
    except Exception as exc:
        session = get_session()
        try:
            repo.update_run(session, run_id=run_id, status="failed", error=str(exc))
        finally:
            session.close()
        logger.error("upgrade_job_failed", run_id=run_id, error=str(exc))
        raise
    finally:
        release_upgrade_lock(lock)
