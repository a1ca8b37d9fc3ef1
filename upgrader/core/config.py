"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

_PACKAGE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


@dataclass(frozen=True)
class Settings:
    database_url: str = field(
        default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///./upgrader.db")
    )
    redis_url: str = field(
        default_factory=lambda: os.getenv("REDIS_URL", "redis://localhost:6379/0")
    )
    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO")
    )
    queue_name: str = field(
        default_factory=lambda: os.getenv("QUEUE_NAME", "upgrades")
    )
    sql_script_dir: str = field(
        default_factory=lambda: os.getenv(
            "SQL_SCRIPT_DIR", os.path.join(_PACKAGE_DIR, "sql")
        )
    )
    custom_file_upload_dir: str = field(
        default_factory=lambda: os.getenv("CUSTOM_FILE_UPLOAD_DIR", "./files/custom")
    )
    upgrade_lock_timeout: int = field(
        default_factory=lambda: int(os.getenv("UPGRADE_LOCK_TIMEOUT", "3600"))
    )
    app_version: str = "0.1.0"


def get_settings() -> Settings:
    """Return a Settings instance populated from env vars."""
    return Settings()
