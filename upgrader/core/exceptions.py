"""Error taxonomy for the upgrade runner."""

from __future__ import annotations

from dataclasses import dataclass


class UpgradeError(Exception):
    """Base exception for upgrade runner errors."""


class RegistrationError(UpgradeError):
    """Duplicate or malformed version/step registration."""


class SpecValidationError(UpgradeError):
    """A ColumnSpec is internally inconsistent."""

    def __init__(self, message: str, *, title: str | None = None):
        self.title = title
        if title:
            message = f"{title}: {message}"
        super().__init__(message)


class VersionNotFound(UpgradeError):
    """No step is registered for the requested version."""

    def __init__(self, version: str):
        self.version = version
        super().__init__(f"No upgrade step registered for version {version!r}")


class TaskExecutionError(UpgradeError):
    """A task failed while executing; halts the run."""

    def __init__(self, index: int, label: str, cause: BaseException):
        self.index = index
        self.label = label
        self.cause = cause
        super().__init__(f"Task {index} ({label}) failed: {cause}")


@dataclass(frozen=True)
class PartialStateWarning:
    """Non-fatal condition recorded during a run (e.g. a fallback value was used)."""

    version: str
    task_label: str
    message: str

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "task_label": self.task_label,
            "message": self.message,
        }
