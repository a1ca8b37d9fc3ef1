"""Structured JSON logging via structlog.

Every event carries ``service="upgrader"``; while a run is in progress
``bind_run`` adds ``run_id`` and ``target_version`` as well.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog

SERVICE_NAME = "upgrader"

_configured = False


def _add_service(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(log_level: str = "INFO", stream: TextIO | None = None) -> None:
    """Configure structlog for JSON output. Safe to call multiple times.

    Output goes to stderr by default so CLI results on stdout stay clean.
    """
    global _configured
    if _configured:
        return
    _configured = True

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            _add_service,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    if not root_logger.handlers:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(logging.Formatter("%(message)s"))
        root_logger.addHandler(handler)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger."""
    setup_logging()
    return structlog.get_logger(name)


def bind_run(run_id: str, target_version: str) -> None:
    """Attach run identifiers to every log line emitted in this context."""
    structlog.contextvars.bind_contextvars(
        run_id=run_id, target_version=target_version
    )


def unbind_run() -> None:
    structlog.contextvars.unbind_contextvars("run_id", "target_version")
