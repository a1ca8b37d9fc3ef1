"""Shared test fixtures."""

from __future__ import annotations

import dataclasses
import datetime

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from upgrader.core.config import get_settings
from upgrader.db.models import Base
from upgrader.execution.context import UpgradeContext

FIXED_NOW = datetime.datetime(2026, 10, 19, 12, 0, 0)


@pytest.fixture()
def db_session() -> Session:
    """In-memory SQLite session with ledger tables created."""
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    session = factory()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture(autouse=True)
def _set_env_for_tests(tmp_path, monkeypatch):
    """Point DATABASE_URL to a temporary SQLite and uploads to tmp."""
    db_path = str(tmp_path / "test.db")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("CUSTOM_FILE_UPLOAD_DIR", str(tmp_path / "uploads"))
    (tmp_path / "uploads").mkdir(exist_ok=True)

    # Reset the singleton engine so each test gets a fresh one
    from upgrader.db import session as sess_mod
    sess_mod.reset_engine()
    yield
    sess_mod.reset_engine()


@pytest.fixture()
def engine():
    """The (file-backed) engine the executor and runner use."""
    from upgrader.db.session import get_engine
    return get_engine()


@pytest.fixture()
def fixed_now() -> datetime.datetime:
    """The time every context built by make_ctx reports."""
    return FIXED_NOW


@pytest.fixture()
def script_dir(tmp_path):
    d = tmp_path / "sql"
    d.mkdir()
    return d


@pytest.fixture()
def make_ctx(script_dir):
    """Build an UpgradeContext with a fixed clock and a temp script dir."""

    def _make(version: str = "9.9.9", **kwargs) -> UpgradeContext:
        settings = dataclasses.replace(get_settings(), sql_script_dir=str(script_dir))
        kwargs.setdefault("clock", lambda: FIXED_NOW)
        return UpgradeContext(version=version, settings=settings, **kwargs)

    return _make


@pytest.fixture()
def ddl(engine):
    """Run raw statements against the test database."""

    def _run(*statements: str) -> None:
        with engine.begin() as conn:
            for statement in statements:
                conn.execute(text(statement))

    return _run
