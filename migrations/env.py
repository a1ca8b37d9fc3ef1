"""Alembic environment for the upgrade ledger."""

from alembic import context
from sqlalchemy import engine_from_config, pool

from upgrader.db.models import Base

config = context.config

target_metadata = Base.metadata

# Keeps the runner's own revision marker apart from anything the
# application database already tracks.
VERSION_TABLE = "upgrade_ledger_version"


def run_migrations_offline() -> None:
    """Emit SQL for the ledger tables without a database connection."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        version_table=VERSION_TABLE,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            version_table=VERSION_TABLE,
            render_as_batch=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
