"""Redis connection, RQ queue and upgrade lock helpers."""

from __future__ import annotations

import threading

from redis import Redis
from redis.exceptions import LockError, LockNotOwnedError
from redis.lock import Lock
from rq import Queue

from upgrader.core.config import get_settings
from upgrader.core.logging import get_logger

logger = get_logger(__name__)

UPGRADE_LOCK_NAME = "upgrader:upgrade-lock"


def get_redis_connection() -> Redis:
    """Return a Redis connection from config."""
    settings = get_settings()
    return Redis.from_url(settings.redis_url)


def get_queue(name: str | None = None) -> Queue:
    """Return an RQ queue bound to the configured Redis."""
    settings = get_settings()
    return Queue(name or settings.queue_name, connection=get_redis_connection())


def get_upgrade_lock(connection: Redis | None = None) -> Lock:
    """Advisory lock serialising upgrade runs against one database.

    The timeout is a lease, not a limit on the run: ``LockHeartbeat``
    renews it for as long as the run is alive, so only a crashed worker
    lets it lapse.
    """
    settings = get_settings()
    conn = connection or get_redis_connection()
    return conn.lock(
        UPGRADE_LOCK_NAME,
        timeout=settings.upgrade_lock_timeout,
        blocking_timeout=0,
    )


class LockHeartbeat:
    """Background thread renewing a held lock every *interval* seconds."""

    def __init__(self, lock: Lock, interval: float) -> None:
        self.lock = lock
        self.interval = interval
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._beat, name="upgrade-lock-heartbeat", daemon=True
        )

    def _beat(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.lock.reacquire()
            except LockError as exc:
                logger.error("upgrade_lock_renew_failed", error=str(exc))
                return

    def start(self) -> LockHeartbeat:
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()
        self._thread.join()

    def __enter__(self) -> LockHeartbeat:
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.stop()


def heartbeat_interval(timeout: float) -> float:
    """Renew three times per lease so one slow beat does not lose the lock."""
    return max(timeout / 3, 0.1)


def release_upgrade_lock(lock: Lock) -> None:
    """Release *lock*; a lease that already lapsed is logged, not raised."""
    try:
        lock.release()
    except LockNotOwnedError as exc:
        logger.warning("upgrade_lock_lost_before_release", error=str(exc))
