"""Tests for the background upgrade job."""

from __future__ import annotations

import time
from unittest.mock import MagicMock

import fakeredis
import pytest
from redis.exceptions import LockNotOwnedError

from upgrader.db import repositories as repo
from upgrader.db.session import get_session, init_db
from upgrader.jobs import tasks as job_tasks
from upgrader.jobs.queue import LockHeartbeat, get_upgrade_lock


@pytest.fixture()
def queued_run():
    init_db()
    session = get_session()
    try:
        run = repo.create_run(session, target_version="6.2.0")
        return run.id
    finally:
        session.close()


def _run(run_id):
    session = get_session()
    try:
        return repo.get_run(session, run_id=run_id)
    finally:
        session.close()


def _lock(acquired=True):
    lock = MagicMock()
    lock.acquire.return_value = acquired
    return lock


def test_job_runs_upgrade_under_lock(queued_run, monkeypatch):
    finished = MagicMock(status="succeeded")
    upgrade = MagicMock(return_value=finished)
    monkeypatch.setattr(job_tasks, "upgrade", upgrade)
    lock = _lock()

    status = job_tasks.run_upgrade_job(queued_run, lock=lock)

    assert status == "succeeded"
    upgrade.assert_called_once_with("6.2.0", run_id=queued_run)
    lock.acquire.assert_called_once()
    lock.release.assert_called_once()


def test_job_refuses_when_locked(queued_run, monkeypatch):
    upgrade = MagicMock()
    monkeypatch.setattr(job_tasks, "upgrade", upgrade)
    lock = _lock(acquired=False)

    with pytest.raises(job_tasks.UpgradeLocked):
        job_tasks.run_upgrade_job(queued_run, lock=lock)

    upgrade.assert_not_called()
    lock.release.assert_not_called()
    run = _run(queued_run)
    assert run.status == "failed"
    assert "already running" in run.error


def test_job_marks_run_failed_on_crash(queued_run, monkeypatch):
    monkeypatch.setattr(job_tasks, "upgrade", MagicMock(side_effect=RuntimeError("lost connection")))
    lock = _lock()

    with pytest.raises(RuntimeError):
        job_tasks.run_upgrade_job(queued_run, lock=lock)

    lock.release.assert_called_once()
    run = _run(queued_run)
    assert run.status == "failed"
    assert run.error == "lost connection"


def test_job_with_unknown_run():
    init_db()
    lock = _lock()
    assert job_tasks.run_upgrade_job("missing", lock=lock) == "missing"
    lock.acquire.assert_not_called()


def test_job_failed_upgrade_reports_status(queued_run):
    # No CRM tables exist: the real runner records the failure on the run
    status = job_tasks.run_upgrade_job(queued_run, lock=_lock())

    assert status == "failed"
    run = _run(queued_run)
    assert run.failed_index == 0
    assert run.current_version == "6.2.alpha1"


# -------------------------------------------------------------------
# Lock lease
# -------------------------------------------------------------------

def test_lock_renewed_while_run_is_alive(queued_run, monkeypatch):
    def slow_upgrade(target, run_id):
        time.sleep(0.4)
        return MagicMock(status="succeeded")

    monkeypatch.setattr(job_tasks, "upgrade", slow_upgrade)
    lock = _lock()

    job_tasks.run_upgrade_job(queued_run, lock=lock, heartbeat_every=0.05)

    assert lock.reacquire.call_count >= 2


def test_lapsed_lock_does_not_mask_outcome(queued_run, monkeypatch):
    monkeypatch.setattr(job_tasks, "upgrade", MagicMock(return_value=MagicMock(status="succeeded")))
    lock = _lock()
    lock.release.side_effect = LockNotOwnedError("Cannot release a lock that's no longer owned")

    assert job_tasks.run_upgrade_job(queued_run, lock=lock) == "succeeded"
    assert _run(queued_run).status == "queued"


def test_heartbeat_stops_after_losing_lock():
    lock = MagicMock()
    lock.reacquire.side_effect = LockNotOwnedError("gone")

    with LockHeartbeat(lock, 0.01):
        time.sleep(0.1)

    assert lock.reacquire.call_count == 1


def test_run_longer_than_lock_timeout_keeps_lock(queued_run, monkeypatch):
    monkeypatch.setenv("UPGRADE_LOCK_TIMEOUT", "1")
    server = fakeredis.FakeServer()
    lock = get_upgrade_lock(fakeredis.FakeRedis(server=server))
    contender = get_upgrade_lock(fakeredis.FakeRedis(server=server))
    seen = {}

    def slow_upgrade(target, run_id):
        time.sleep(1.5)
        seen["contender_acquired"] = contender.acquire()
        return MagicMock(status="succeeded")

    monkeypatch.setattr(job_tasks, "upgrade", slow_upgrade)

    status = job_tasks.run_upgrade_job(queued_run, lock=lock, heartbeat_every=0.2)

    assert status == "succeeded"
    assert seen["contender_acquired"] is False
    assert contender.acquire() is True
