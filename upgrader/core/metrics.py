"""Prometheus metrics definitions."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

UPGRADE_TASK_DURATION = Histogram(
    "upgrade_task_duration_seconds",
    "Duration of individual upgrade tasks in seconds",
    labelnames=["version", "kind"],
)

UPGRADE_TASK_COUNT = Counter(
    "upgrade_task_total",
    "Upgrade tasks executed, by outcome",
    labelnames=["version", "kind", "status"],
)

UPGRADE_RUN_COUNT = Counter(
    "upgrade_run_total",
    "Upgrade runs finished, by outcome",
    labelnames=["status"],
)

UPGRADE_WARNINGS = Counter(
    "upgrade_warning_total",
    "Non-fatal partial-state warnings raised during upgrades",
    labelnames=["version"],
)
