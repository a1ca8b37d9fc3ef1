"""CLI entrypoint: python -m upgrader_cli <command>."""

from __future__ import annotations

import json
import sys

import click

from upgrader.core.config import get_settings
from upgrader.core.exceptions import UpgradeError, VersionNotFound
from upgrader.core.logging import setup_logging
from upgrader.db.session import init_db


@click.group()
def cli() -> None:
    """Versioned schema upgrade runner."""
    setup_logging(get_settings().log_level)
    init_db()


# -------------------------------------------------------------------
# Inspection
# -------------------------------------------------------------------

@cli.command()
def versions() -> None:
    """List registered versions, marking the one the database is at."""
    from upgrader.execution.runner import current_version
    from upgrader.steps.catalog import load_default_registry

    registry = load_default_registry()
    current = current_version()
    if not registry.versions():
        click.echo("No upgrade steps registered.")
        return
    for version in registry.versions():
        step = registry.resolve(version)
        marker = "*" if version == current else " "
        click.echo(f"{marker} {version}  ({step.source}, {len(step.tasks)} tasks)")


@cli.command()
@click.option("--to", "target", default=None, help="Target version (default: latest)")
@click.option("--from", "current", default=None, help="Assume this current version")
@click.option("--json", "as_json", is_flag=True, help="Print the plan as JSON")
def plan(target: str | None, current: str | None, as_json: bool) -> None:
    """Show the tasks an upgrade would run."""
    from upgrader.execution import runner
    from upgrader.steps.catalog import load_default_registry
    from upgrader.steps.tasks import describe

    registry = load_default_registry()
    target = target or registry.latest()
    if target is None:
        click.echo("No upgrade steps registered.")
        return
    try:
        steps = runner.plan(target, current, registry=registry)
    except VersionNotFound as exc:
        click.echo(f"ERROR: {exc}", err=True)
        sys.exit(1)

    if as_json:
        payload = [
            {"version": s.version, "tasks": [describe(t) for t in s.tasks]}
            for s in steps
        ]
        click.echo(json.dumps(payload, indent=2))
        return
    if not steps:
        click.echo(f"Nothing to do; database is at or beyond {target}.")
        return
    for step in steps:
        click.echo(f"{step.version} ({step.source})")
        if step.pre_upgrade_message:
            click.echo(f"  note: {step.pre_upgrade_message}")
        for index, task in enumerate(step.tasks):
            click.echo(f"  [{index}] {task.kind:<13} {task.label}")


# -------------------------------------------------------------------
# Running
# -------------------------------------------------------------------

@cli.command()
@click.option("--to", "target", default=None, help="Target version (default: latest)")
@click.option("--no-resume", is_flag=True, help="Re-run tasks the ledger marks done")
def upgrade(target: str | None, no_resume: bool) -> None:
    """Apply pending upgrade steps up to the target version."""
    from upgrader.db import repositories as repo
    from upgrader.execution import runner
    from upgrader.steps.catalog import load_default_registry

    registry = load_default_registry()
    target = target or registry.latest()
    if target is None:
        click.echo("No upgrade steps registered.")
        return

    def progress(index: int, total: int, label: str) -> None:
        click.echo(f"  [{index + 1}/{total}] {label}")

    try:
        run = runner.upgrade(
            target, resume=not no_resume, progress=progress, registry=registry
        )
    except UpgradeError as exc:
        click.echo(f"ERROR: {exc}", err=True)
        sys.exit(1)

    for warning in repo.run_warnings(run):
        click.echo(f"WARNING [{warning['version']}] {warning['task_label']}: {warning['message']}")
    if run.status != "succeeded":
        click.echo(
            f"FAILED at {run.current_version} task {run.failed_index} "
            f"({run.failed_label}): {run.error}",
            err=True,
        )
        click.echo("Fix the cause and re-run to resume from the failed task.", err=True)
        sys.exit(1)
    click.echo(f"Upgraded to {target} (run {run.id})")


@cli.command()
def status() -> None:
    """Show the current schema version and recent runs."""
    from upgrader.db import repositories as repo
    from upgrader.db.session import get_session

    session = get_session()
    try:
        click.echo(f"Schema version: {repo.get_schema_version(session) or '(none)'}")
        runs = repo.list_runs(session, limit=10)
        if not runs:
            click.echo("No upgrade runs recorded.")
            return
        for run in runs:
            click.echo(
                f"  {run.id}  {run.from_version or '-'} -> {run.target_version}  "
                f"status={run.status}  created={run.created_at}"
            )
    finally:
        session.close()


@cli.command("show-run")
@click.argument("run_id")
def show_run(run_id: str) -> None:
    """Show per-task outcomes and warnings of one run."""
    from upgrader.db import repositories as repo
    from upgrader.db.session import get_session

    session = get_session()
    try:
        run = repo.get_run(session, run_id=run_id)
        if run is None:
            click.echo("ERROR: run not found", err=True)
            sys.exit(1)
        click.echo(f"Run {run.id}: {run.status} ({run.progress_pct}%)")
        for entry in repo.task_log(session, run_id=run.id):
            line = f"  {entry.version} [{entry.task_index}] {entry.status:<9} {entry.label}"
            if entry.error:
                line += f"  error={entry.error}"
            click.echo(line)
        for warning in repo.run_warnings(run):
            click.echo(f"  WARNING {warning['task_label']}: {warning['message']}")
    finally:
        session.close()


if __name__ == "__main__":
    cli()
