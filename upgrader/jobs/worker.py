"""RQ worker entry point: python -m upgrader.jobs.worker."""

from __future__ import annotations

import click
from rq import Worker

from upgrader.core.config import get_settings
from upgrader.core.logging import get_logger, setup_logging
from upgrader.db.session import init_db
from upgrader.jobs.queue import get_queue, get_redis_connection
from upgrader.steps.catalog import load_default_registry

logger = get_logger(__name__)


@click.command()
@click.option("--queue", "queue_name", default=None, help="Queue to listen on (default: QUEUE_NAME)")
@click.option("--burst", is_flag=True, help="Exit once the queue is empty")
def main(queue_name: str | None, burst: bool) -> None:
    """Process queued upgrade runs one at a time."""
    settings = get_settings()
    setup_logging(settings.log_level)
    init_db()
    # Fail at startup, not mid-job, if a step definition is broken
    registry = load_default_registry()
    logger.info("upgrade_worker_started", queue=queue_name or settings.queue_name, versions=registry.versions())

    # Upgrades must not overlap: one queue, one worker process.
    worker = Worker([get_queue(queue_name)], connection=get_redis_connection())
    worker.work(burst=burst)


if __name__ == "__main__":
    main()
