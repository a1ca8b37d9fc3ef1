"""Version step registry.

Maps each release label to exactly one upgrade step.  A version is
defined either by a step function, by a SQL script found in the script
directory, or by both.  When both exist the function takes over: it
must add ``run_sql(version)`` itself if the script should still run.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Iterable

from upgrader.core.exceptions import RegistrationError, SpecValidationError, VersionNotFound
from upgrader.core.logging import get_logger
from upgrader.steps.tasks import TASK_TYPES, AlterColumn, RunScript, Task, run_sql
from upgrader.steps.versions import compare_versions, is_valid_version, sort_versions

logger = get_logger(__name__)

StepFunction = Callable[[str], Iterable[Task]]

SCRIPT_SUFFIXES = (".sql.j2", ".sql")


@dataclass(frozen=True)
class UpgradeStep:
    version: str
    tasks: tuple[Task, ...]
    source: str  # "function" | "script"
    pre_upgrade_message: str | None = None
    post_upgrade_message: str | None = None


def build_tasks(func: StepFunction, version: str) -> tuple[Task, ...]:
    """Call a step function and validate what it returns."""
    tasks = tuple(func(version) or ())
    for position, task in enumerate(tasks):
        if not isinstance(task, TASK_TYPES):
            raise RegistrationError(
                f"Step {version} returned a non-task at position {position}: {task!r}"
            )
        if isinstance(task, AlterColumn):
            task.spec.validate()
    return tasks


class StepRegistry:
    """Static version -> step mapping, filled at import time."""

    def __init__(self) -> None:
        self._functions: dict[str, UpgradeStep] = {}
        self._scripts: dict[str, str] = {}

    # ---------------------------------------------------------------
    # Registration
    # ---------------------------------------------------------------

    def register_step(
        self,
        version: str,
        func: StepFunction,
        *,
        pre_upgrade_message: str | None = None,
        post_upgrade_message: str | None = None,
    ) -> UpgradeStep:
        """Register *func* as the step for *version*."""
        _check_version(version)
        if version in self._functions:
            raise RegistrationError(f"Duplicate step function for version {version}")

        try:
            tasks = build_tasks(func, version)
        except SpecValidationError:
            logger.error("step_spec_invalid", version=version)
            raise

        step = UpgradeStep(
            version=version,
            tasks=tasks,
            source="function",
            pre_upgrade_message=pre_upgrade_message,
            post_upgrade_message=post_upgrade_message,
        )
        self._functions[version] = step
        self._check_script_usage(version)
        logger.debug("step_registered", version=version, tasks=len(tasks))
        return step

    def step(self, version: str, **messages: str | None) -> Callable[[StepFunction], StepFunction]:
        """Decorator form of :meth:`register_step`."""

        def decorator(func: StepFunction) -> StepFunction:
            self.register_step(version, func, **messages)
            return func

        return decorator

    def register_script(self, version: str, path: str) -> None:
        """Register the SQL script for *version* (path relative to the script dir)."""
        _check_version(version)
        if version in self._scripts:
            raise RegistrationError(
                f"Duplicate script for version {version}: "
                f"{self._scripts[version]!r} and {path!r}"
            )
        self._scripts[version] = path
        self._check_script_usage(version)

    def discover_scripts(self, directory: str) -> list[str]:
        """Register every ``<version>.sql`` / ``<version>.sql.j2`` in *directory*."""
        found: list[str] = []
        if not os.path.isdir(directory):
            logger.warning("script_dir_missing", directory=directory)
            return found

        for filename in sorted(os.listdir(directory)):
            version = _version_from_filename(filename)
            if version is None:
                continue
            self.register_script(version, filename)
            found.append(version)
        logger.info("scripts_discovered", directory=directory, count=len(found))
        return found

    def _check_script_usage(self, version: str) -> None:
        step = self._functions.get(version)
        script = self._scripts.get(version)
        if step is None or script is None:
            return
        runs_script = any(
            isinstance(task, RunScript) and _same_script(task.path, script)
            for task in step.tasks
        )
        if not runs_script:
            logger.warning(
                "step_function_skips_script", version=version, script=script
            )

    # ---------------------------------------------------------------
    # Lookup
    # ---------------------------------------------------------------

    def __contains__(self, version: str) -> bool:
        return version in self._functions or version in self._scripts

    def versions(self) -> list[str]:
        """All registered versions, oldest first."""
        return sort_versions(set(self._functions) | set(self._scripts))

    def resolve(self, version: str) -> UpgradeStep:
        """Return the step for *version* or raise VersionNotFound."""
        step = self._functions.get(version)
        if step is not None:
            return step
        script = self._scripts.get(version)
        if script is not None:
            task = run_sql(version)
            return UpgradeStep(
                version=version,
                tasks=(RunScript(label=task.label, path=script),),
                source="script",
            )
        raise VersionNotFound(version)

    def pending(self, current: str | None, target: str) -> list[str]:
        """Versions strictly after *current* up to and including *target*."""
        if target not in self:
            raise VersionNotFound(target)
        return [
            v
            for v in self.versions()
            if (current is None or compare_versions(v, current) > 0)
            and compare_versions(v, target) <= 0
        ]

    def latest(self) -> str | None:
        versions = self.versions()
        return versions[-1] if versions else None


def _check_version(version: str) -> None:
    if not isinstance(version, str) or not is_valid_version(version):
        raise RegistrationError(f"Malformed version string: {version!r}")


def _version_from_filename(filename: str) -> str | None:
    for suffix in SCRIPT_SUFFIXES:
        if filename.endswith(suffix):
            version = filename[: -len(suffix)]
            if is_valid_version(version):
                return version
            logger.warning("script_name_ignored", filename=filename)
            return None
    return None


def _same_script(task_path: str, script: str) -> bool:
    # run_sql() names "<version>.sql"; the file on disk may be a template
    return task_path == script or f"{task_path}.j2" == script


registry = StepRegistry()
