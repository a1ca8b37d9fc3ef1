"""Schema introspection and editing for idempotent tasks.

``SchemaInspector`` answers "does this column/index/foreign key exist and
what does it look like"; ``SchemaEditor`` applies changes through Alembic
operations.  Column changes go through Alembic batch mode so that SQLite
(which cannot ALTER a column) recreates the table while MySQL and
PostgreSQL get a plain ``ALTER TABLE``.
"""

from __future__ import annotations

import re
from typing import Any

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy.dialects import mysql, registry
from sqlalchemy.engine import Connection, Dialect

from upgrader.core.logging import get_logger
from upgrader.steps.tasks import ColumnSpec

logger = get_logger(__name__)

_WRAPPERS = re.compile(r"^\((.*)\)$", re.DOTALL)

_INT_SIZES: tuple[tuple[str, type[sa.types.TypeEngine]], ...] = (
    ("tinyint", mysql.TINYINT),
    ("mediumint", mysql.MEDIUMINT),
    ("smallint", sa.SmallInteger),
    ("bigint", sa.BigInteger),
)

_TEXT_SIZES: tuple[tuple[str, type[sa.types.TypeEngine]], ...] = (
    ("tinytext", mysql.TINYTEXT),
    ("mediumtext", mysql.MEDIUMTEXT),
    ("longtext", mysql.LONGTEXT),
)


def _size(sa_type: sa.types.TypeEngine, sizes, default: str) -> str:
    for name, cls in sizes:
        if isinstance(sa_type, cls):
            return name
    return default


def type_shape(sa_type: sa.types.TypeEngine, dialect: Dialect | None = None) -> tuple:
    """Comparable shape of a (possibly reflected) SQLAlchemy type.

    With *dialect*, type variants (e.g. ``int unsigned`` on MySQL) are
    resolved first.  The shape covers string length, text size, integer
    size and signedness, and numeric precision and scale.
    """
    if dialect is not None:
        sa_type = sa_type.dialect_impl(dialect)
    if isinstance(sa_type, sa.Boolean):
        return ("boolean",)
    if isinstance(sa_type, sa.Text):
        return ("text", _size(sa_type, _TEXT_SIZES, "text"))
    if isinstance(sa_type, sa.String):
        return ("string", sa_type.length)
    if isinstance(sa_type, sa.Integer):
        unsigned = bool(getattr(sa_type, "unsigned", False))
        return ("integer", _size(sa_type, _INT_SIZES, "int"), unsigned)
    if isinstance(sa_type, sa.Float):
        return ("float", "double" if isinstance(sa_type, sa.Double) else "float")
    if isinstance(sa_type, sa.Numeric):
        return ("numeric", sa_type.precision, sa_type.scale)
    if isinstance(sa_type, sa.DateTime):
        return ("datetime",)
    if isinstance(sa_type, sa.Date):
        return ("date",)
    return (type(sa_type).__name__.lower(),)


def reflected_dialect(sa_type: sa.types.TypeEngine) -> Dialect | None:
    """Dialect a reflected type came from, if it is a dialect-specific class."""
    parts = type(sa_type).__module__.split(".")
    if parts[:2] != ["sqlalchemy", "dialects"] or len(parts) < 3:
        return None
    return registry.load(parts[2])()


def normalize_default(value: Any) -> str | None:
    """Render a server default comparably across dialects.

    ``'x'``, ``('x')`` and ``x`` are equal; so are ``CURRENT_TIMESTAMP``
    and ``current_timestamp()``.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, sa.TextClause):
        value = value.text
    text = str(value).strip()
    while True:
        m = _WRAPPERS.match(text)
        if not m:
            break
        text = m.group(1).strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        text = text[1:-1]
    if text.lower() in ("current_timestamp", "current_timestamp()", "now()"):
        return "CURRENT_TIMESTAMP"
    return text


def column_matches(
    existing: dict[str, Any], spec: ColumnSpec, dialect: Dialect | None = None
) -> bool:
    """True when a reflected column already satisfies *spec*.

    *dialect* defaults to the one the reflected type belongs to.
    """
    if dialect is None:
        dialect = reflected_dialect(existing["type"])
    shape = type_shape(existing["type"], dialect)
    target = type_shape(spec.sa_type, dialect)

    # MySQL reflects BOOLEAN as TINYINT(1)
    boolean_as_tinyint = target == ("boolean",) and shape[:2] == ("integer", "tinyint")
    if shape != target and not boolean_as_tinyint:
        return False
    if bool(existing.get("nullable", True)) != spec.nullable:
        return False
    return normalize_default(existing.get("default")) == normalize_default(spec.server_default())


class SchemaInspector:
    """Read-only view of the live schema on one connection."""

    def __init__(self, connection: Connection) -> None:
        self.connection = connection

    def _inspector(self) -> sa.Inspector:
        # Fresh each call: reflection results are cached per inspector and
        # go stale as soon as a task mutates the schema.
        return sa.inspect(self.connection)

    def get_column(self, table: str, column: str) -> dict[str, Any] | None:
        for col in self._inspector().get_columns(table):
            if col["name"] == column:
                return col
        return None

    def get_index(self, table: str, index: str) -> dict[str, Any] | None:
        for idx in self._inspector().get_indexes(table):
            if idx["name"] == index:
                return idx
        # MySQL/PostgreSQL report UNIQUE constraints separately
        for uc in self._inspector().get_unique_constraints(table):
            if uc["name"] == index:
                return {"name": uc["name"], "column_names": uc["column_names"], "unique": True}
        return None

    def has_index(self, table: str, index: str) -> bool:
        return self.get_index(table, index) is not None

    def get_foreign_key(self, table: str, name: str) -> dict[str, Any] | None:
        for fk in self._inspector().get_foreign_keys(table):
            if fk.get("name") == name:
                return fk
        return None


class SchemaEditor:
    """Schema mutations via Alembic operations bound to one connection."""

    def __init__(self, connection: Connection) -> None:
        self.connection = connection
        self.ops = Operations(MigrationContext.configure(connection))

    @property
    def supports_comments(self) -> bool:
        return bool(self.connection.dialect.supports_comments)

    def _column(self, name: str, spec: ColumnSpec) -> sa.Column:
        return sa.Column(
            name,
            spec.sa_type,
            nullable=spec.nullable,
            server_default=spec.server_default(),
            comment=spec.description if self.supports_comments else None,
        )

    def add_column(self, table: str, column: str, spec: ColumnSpec) -> None:
        self.ops.add_column(table, self._column(column, spec))
        logger.info("column_added", table=table, column=column, sql_type=spec.sql_type)

    def alter_column(self, table: str, column: str, spec: ColumnSpec, existing: dict[str, Any]) -> None:
        kwargs: dict[str, Any] = {
            "existing_type": existing["type"],
            "existing_nullable": existing.get("nullable", True),
            "type_": spec.sa_type,
            "nullable": spec.nullable,
            "server_default": spec.server_default() if spec.default is not None else None,
        }
        if existing.get("default") is not None:
            kwargs["existing_server_default"] = existing["default"]
        if self.supports_comments:
            kwargs["comment"] = spec.description
        with self.ops.batch_alter_table(table) as batch:
            batch.alter_column(column, **kwargs)
        logger.info("column_altered", table=table, column=column, sql_type=spec.sql_type)

    def fill_nulls(self, table: str, column: str, value: Any) -> int:
        """Set NULLs in *column* to *value*; returns affected rows."""
        col = sa.column(column)
        stmt = sa.update(sa.table(table, col)).where(col.is_(None)).values({column: value})
        return self.connection.execute(stmt).rowcount

    def drop_index(self, table: str, index: str) -> None:
        self.ops.drop_index(index, table_name=table)
        logger.info("index_dropped", table=table, index=index)

    def create_unique_index(self, table: str, index: str, columns: list[str]) -> None:
        self.ops.create_index(index, table, columns, unique=True)
        logger.info("index_created", table=table, index=index, columns=columns)

    def drop_foreign_key(self, table: str, name: str) -> None:
        with self.ops.batch_alter_table(table) as batch:
            batch.drop_constraint(name, type_="foreignkey")
        logger.info("foreign_key_dropped", table=table, name=name)

    def create_foreign_key(self, table: str, fk: dict[str, Any]) -> None:
        options = fk.get("options") or {}
        with self.ops.batch_alter_table(table) as batch:
            batch.create_foreign_key(
                fk["name"],
                fk["referred_table"],
                fk["constrained_columns"],
                fk["referred_columns"],
                ondelete=options.get("ondelete"),
                onupdate=options.get("onupdate"),
            )
        logger.info("foreign_key_created", table=table, name=fk["name"])
