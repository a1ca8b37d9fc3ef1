"""Tests for the built-in 6.2 upgrade steps."""

from __future__ import annotations

import os

import pytest
import sqlalchemy as sa

from upgrader.core.config import get_settings
from upgrader.db.repositories import run_warnings
from upgrader.execution import runner
from upgrader.execution.context import UpgradeContext
from upgrader.execution.executor import Success, TaskExecutor
from upgrader.execution.schema import normalize_default
from upgrader.steps import catalog
from upgrader.steps.registry import StepRegistry
from upgrader.steps.tasks import AlterColumn, CustomAction, RunScript

SQL_DIR = get_settings().sql_script_dir


@pytest.fixture()
def builtin():
    return catalog.register_builtin_steps(StepRegistry(), script_dir=SQL_DIR)


def test_builtin_versions(builtin):
    assert builtin.versions() == ["6.2.alpha1", "6.2.beta1", "6.2.0"]
    assert builtin.latest() == "6.2.0"


def test_alpha1_task_order(builtin):
    step = builtin.resolve("6.2.alpha1")
    assert step.source == "function"
    assert step.post_upgrade_message
    kinds = [type(t) for t in step.tasks]
    assert kinds == [
        RunScript,
        AlterColumn,
        CustomAction,
        AlterColumn,
        AlterColumn,
        AlterColumn,
        AlterColumn,
        AlterColumn,
        CustomAction,
    ]
    assert step.tasks[0].path == "6.2.alpha1.sql"
    assert [(t.table, t.column) for t in step.tasks if isinstance(t, AlterColumn)] == [
        ("civicrm_managed", "checksum"),
        ("civicrm_file", "upload_date"),
        ("civicrm_custom_group", "name"),
        ("civicrm_custom_group", "extends"),
        ("civicrm_custom_group", "style"),
        ("civicrm_acl_contact_cache", "domain_id"),
    ]
    # backfill runs before upload_date becomes required
    assert step.tasks[2].label == "Set upload_date in file table"


def test_script_only_versions(builtin):
    for version in ("6.2.beta1", "6.2.0"):
        step = builtin.resolve(version)
        assert step.source == "script"
        (task,) = step.tasks
        assert task.path == f"{version}.sql"


def test_option_sources():
    assert "Contact" in catalog.custom_group_extends_options()
    assert catalog.custom_group_style_options() == ["Tab", "Inline", "Tab with table"]


def test_script_files_present():
    names = sorted(os.listdir(SQL_DIR))
    assert "6.2.alpha1.sql.j2" in names
    assert "6.2.beta1.sql" in names
    assert "6.2.0.sql" in names


# -------------------------------------------------------------------
# Full 6.2 upgrade on SQLite
# -------------------------------------------------------------------

CRM_SCHEMA = (
    "CREATE TABLE civicrm_managed (id INTEGER PRIMARY KEY, module VARCHAR(255), name VARCHAR(255))",
    "CREATE TABLE civicrm_file (id INTEGER PRIMARY KEY, uri VARCHAR(255), upload_date DATETIME)",
    "CREATE TABLE civicrm_custom_group ("
    " id INTEGER PRIMARY KEY,"
    " name VARCHAR(64),"
    " title VARCHAR(64) NOT NULL,"
    " extends VARCHAR(255),"
    " style VARCHAR(15))",
    "CREATE TABLE civicrm_acl_contact_cache ("
    " id INTEGER PRIMARY KEY,"
    " user_id INTEGER,"
    " contact_id INTEGER NOT NULL,"
    " operation VARCHAR(8) NOT NULL)",
    "CREATE UNIQUE INDEX UI_user_contact_operation"
    " ON civicrm_acl_contact_cache (user_id, contact_id, operation)",
    "INSERT INTO civicrm_custom_group (id, name, title, extends, style) VALUES"
    " (1, NULL, 'Extra', NULL, NULL), (2, 'kept', 'Kept', 'Individual', 'Tab')",
    "INSERT INTO civicrm_file (id, uri, upload_date) VALUES (1, NULL, NULL)",
    "INSERT INTO civicrm_acl_contact_cache (user_id, contact_id, operation) VALUES (1, 2, 'View')",
)


def _columns(engine, table):
    return {c["name"]: c for c in sa.inspect(engine).get_columns(table)}


def test_full_upgrade(engine, ddl, builtin):
    ddl(*CRM_SCHEMA)

    run = runner.upgrade("6.2.0", registry=builtin)

    assert run.status == "succeeded", run.error
    assert runner.current_version() == "6.2.0"

    with engine.connect() as conn:
        groups = conn.execute(
            sa.text("SELECT id, name, extends, style FROM civicrm_custom_group ORDER BY id")
        ).all()
        upload_date = conn.execute(sa.text("SELECT upload_date FROM civicrm_file")).scalar()
        cache_rows = conn.execute(sa.text("SELECT COUNT(*) FROM civicrm_acl_contact_cache")).scalar()
    assert [tuple(g) for g in groups] == [
        (1, "custom_group_1", "Contact", "Inline"),
        (2, "kept", "Individual", "Tab"),
    ]
    assert upload_date is not None
    assert cache_rows == 0  # 6.2.beta1 clears the cache

    group_cols = _columns(engine, "civicrm_custom_group")
    assert not group_cols["name"]["nullable"]
    assert normalize_default(group_cols["style"]["default"]) == "Inline"
    file_cols = _columns(engine, "civicrm_file")
    assert not file_cols["upload_date"]["nullable"]
    assert normalize_default(file_cols["upload_date"]["default"]) == "CURRENT_TIMESTAMP"
    assert "checksum" in _columns(engine, "civicrm_managed")

    (index,) = [
        i
        for i in sa.inspect(engine).get_indexes("civicrm_acl_contact_cache")
        if i["name"] == "UI_user_contact_operation"
    ]
    assert index["column_names"] == ["domain_id", "user_id", "contact_id", "operation"]
    assert index["unique"]

    # one file had no uri
    assert [w["task_label"] for w in run_warnings(run)] == ["Set upload_date in file table"]

    # replaying 6.2.alpha1 against the upgraded schema is a no-op
    result = TaskExecutor(engine).run(
        builtin.resolve("6.2.alpha1").tasks, UpgradeContext(version="6.2.alpha1")
    )
    assert isinstance(result, Success)
    assert result.warnings == []
