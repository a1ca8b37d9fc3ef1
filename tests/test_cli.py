"""Tests for the upgrader CLI."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from upgrader.db import repositories as repo
from upgrader.db.session import get_session
from upgrader_cli.__main__ import cli


@pytest.fixture()
def runner():
    return CliRunner()


def _latest_run():
    session = get_session()
    try:
        return repo.list_runs(session, limit=1)[0]
    finally:
        session.close()


def test_versions(runner):
    result = runner.invoke(cli, ["versions"])
    assert result.exit_code == 0, result.output
    assert "6.2.alpha1  (function, 9 tasks)" in result.output
    assert "6.2.beta1  (script, 1 tasks)" in result.output


def test_plan(runner):
    result = runner.invoke(cli, ["plan", "--to", "6.2.beta1"])
    assert result.exit_code == 0, result.output
    assert "6.2.alpha1 (function)" in result.output
    assert "[0] run_script" in result.output
    assert "6.2.beta1 (script)" in result.output
    assert "6.2.0" not in result.output


def test_plan_json(runner):
    result = runner.invoke(cli, ["plan", "--from", "6.2.alpha1", "--json"])
    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert [step["version"] for step in payload] == ["6.2.beta1", "6.2.0"]
    assert payload[0]["tasks"][0]["path"] == "6.2.beta1.sql"


def test_plan_nothing_to_do(runner):
    result = runner.invoke(cli, ["plan", "--from", "6.2.0"])
    assert result.exit_code == 0
    assert "Nothing to do" in result.output


def test_plan_unknown_version(runner):
    result = runner.invoke(cli, ["plan", "--to", "7.0.0"])
    assert result.exit_code == 1
    assert "7.0.0" in result.output


def test_upgrade_failure_then_status(runner):
    # No CRM tables: the first script of 6.2.alpha1 fails
    result = runner.invoke(cli, ["upgrade", "--to", "6.2.alpha1"])
    assert result.exit_code == 1
    assert "[1/9] Upgrade DB to 6.2.alpha1: SQL" in result.output
    assert "FAILED at 6.2.alpha1 task 0" in result.output

    status = runner.invoke(cli, ["status"])
    assert status.exit_code == 0
    assert "Schema version: (none)" in status.output
    assert "status=failed" in status.output

    run = _latest_run()
    shown = runner.invoke(cli, ["show-run", run.id])
    assert shown.exit_code == 0
    assert f"Run {run.id}: failed" in shown.output
    assert "6.2.alpha1 [0] failed" in shown.output


def test_upgrade_unknown_version(runner):
    result = runner.invoke(cli, ["upgrade", "--to", "7.0.0"])
    assert result.exit_code == 1
    assert "ERROR" in result.output


def test_status_without_runs(runner):
    result = runner.invoke(cli, ["status"])
    assert result.exit_code == 0
    assert "No upgrade runs recorded." in result.output


def test_show_run_missing(runner):
    result = runner.invoke(cli, ["show-run", "nope"])
    assert result.exit_code == 1
    assert "run not found" in result.output
