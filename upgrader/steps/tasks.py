"""Upgrade tasks and the declarative column specification.

A step function returns an ordered ``list[Task]``.  ``Task`` is a closed
union of three frozen dataclasses; the executor dispatches on it
exhaustively, so a new kind of task must be handled there too.
"""

from __future__ import annotations

import numbers
import re
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Mapping, Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import mysql

from upgrader.core.exceptions import SpecValidationError

# -------------------------------------------------------------------
# SQL types
# -------------------------------------------------------------------

CHARACTER = frozenset({"string", "text"})
NUMERIC = frozenset({"integer", "numeric", "boolean"})
TEMPORAL = frozenset({"date", "datetime"})

_INT_TYPES: dict[str, tuple[type[sa.types.TypeEngine], type[sa.types.TypeEngine]]] = {
    # generic type, MySQL type (carries the unsigned flag)
    "tinyint": (sa.SmallInteger, mysql.TINYINT),
    "smallint": (sa.SmallInteger, mysql.SMALLINT),
    "int": (sa.Integer, mysql.INTEGER),
    "integer": (sa.Integer, mysql.INTEGER),
    "bigint": (sa.BigInteger, mysql.BIGINT),
}

_MYSQL_TEXT: dict[str, type[sa.types.TypeEngine]] = {
    "tinytext": mysql.TINYTEXT,
    "mediumtext": mysql.MEDIUMTEXT,
    "longtext": mysql.LONGTEXT,
}

_VARCHAR = re.compile(r"^(var)?char\((\d+)\)$")
_INTEGER = re.compile(r"^(tinyint|smallint|int|integer|bigint)(\(\d+\))?( unsigned)?$")
_DECIMAL = re.compile(r"^(decimal|numeric)\((\d+),\s*(\d+)\)$")


def parse_sql_type(sql_type: str) -> tuple[str, sa.types.TypeEngine]:
    """Map a SQL type string to ``(family, SQLAlchemy type)``.

    Raises ValueError for types the runner does not know how to create.
    """
    text = " ".join(sql_type.lower().split())

    m = _VARCHAR.match(text)
    if m:
        return "string", sa.String(int(m.group(2)))
    if text == "text":
        return "text", sa.Text()
    if text in _MYSQL_TEXT:
        return "text", sa.Text().with_variant(_MYSQL_TEXT[text](), "mysql")
    m = _INTEGER.match(text)
    if m:
        generic, mysql_type = _INT_TYPES[m.group(1)]
        unsigned = bool(m.group(3))
        return "integer", generic().with_variant(mysql_type(unsigned=unsigned), "mysql")
    if text in ("boolean", "bool"):
        return "boolean", sa.Boolean()
    m = _DECIMAL.match(text)
    if m:
        return "numeric", sa.Numeric(int(m.group(2)), int(m.group(3)))
    if text == "float":
        return "numeric", sa.Float()
    if text == "double":
        return "numeric", sa.Double()
    if text == "date":
        return "date", sa.Date()
    if text == "datetime":
        return "datetime", sa.DateTime()
    if text == "timestamp":
        return "datetime", sa.TIMESTAMP()
    raise ValueError(f"Unsupported SQL type: {sql_type!r}")


# -------------------------------------------------------------------
# ColumnSpec
# -------------------------------------------------------------------

CHOICE_INPUTS = frozenset({"Select", "Radio", "CheckBox"})

# input type -> SQL type families it can be stored in
INPUT_TYPES: dict[str, frozenset[str]] = {
    "Text": CHARACTER,
    "TextArea": CHARACTER,
    "Email": CHARACTER,
    "Url": CHARACTER,
    "Select": CHARACTER | NUMERIC,
    "Radio": CHARACTER | NUMERIC,
    "CheckBox": CHARACTER | NUMERIC,
    "Number": NUMERIC,
    "Select Date": TEMPORAL,
    "Hidden": CHARACTER | NUMERIC | TEMPORAL,
    "File": CHARACTER | NUMERIC,
    "EntityRef": NUMERIC,
}

SQL_EXPRESSION_DEFAULTS = frozenset({"CURRENT_TIMESTAMP", "NOW()"})


@dataclass(frozen=True)
class ColumnSpec:
    """Declarative description of a column's type, constraints and UI hints."""

    title: str
    sql_type: str
    input_type: str
    required: bool = False
    default: Any = None
    description: str | None = None
    # Enumerated-value source: a callable, a dotted reference or a sequence
    options: Callable[[], Any] | str | Sequence[Any] | None = None
    readonly: bool = False
    added_in: str | None = None

    @property
    def family(self) -> str:
        return parse_sql_type(self.sql_type)[0]

    @property
    def sa_type(self) -> sa.types.TypeEngine:
        return parse_sql_type(self.sql_type)[1]

    @property
    def nullable(self) -> bool:
        return not self.required

    @property
    def default_is_expression(self) -> bool:
        return (
            isinstance(self.default, str)
            and self.default.upper() in SQL_EXPRESSION_DEFAULTS
        )

    def validate(self) -> None:
        """Raise SpecValidationError if the column spec is internally inconsistent."""
        try:
            family = self.family
        except ValueError as exc:
            raise SpecValidationError(str(exc), title=self.title) from exc

        allowed = INPUT_TYPES.get(self.input_type)
        if allowed is None:
            raise SpecValidationError(
                f"unknown input type {self.input_type!r}", title=self.title
            )
        if family not in allowed:
            raise SpecValidationError(
                f"input type {self.input_type!r} cannot be stored as {self.sql_type!r}",
                title=self.title,
            )
        if self.input_type in CHOICE_INPUTS and self.options is None:
            # A checkbox over a boolean column is its own option list
            if not (self.input_type == "CheckBox" and family == "boolean"):
                raise SpecValidationError(
                    f"input type {self.input_type!r} requires an options source",
                    title=self.title,
                )
        if self.default is not None and not self.default_is_expression:
            if family in ("integer", "numeric") and not _is_number(self.default):
                raise SpecValidationError(
                    f"default {self.default!r} is not numeric", title=self.title
                )
        if self.default_is_expression and family not in TEMPORAL:
            raise SpecValidationError(
                f"default {self.default!r} requires a date/time column",
                title=self.title,
            )

    def server_default(self) -> sa.TextClause | str | None:
        """Return the DDL server default for this column."""
        if self.default is None:
            return None
        if self.default_is_expression:
            return sa.text("CURRENT_TIMESTAMP")
        if isinstance(self.default, bool):
            return "1" if self.default else "0"
        return str(self.default)

    def default_value(self) -> Any:
        """Value used to backfill NULL rows before a column becomes required."""
        if self.default_is_expression:
            return sa.func.current_timestamp()
        return self.default


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, numbers.Number):
        return True
    try:
        float(str(value))
    except ValueError:
        return False
    return True


# -------------------------------------------------------------------
# Tasks
# -------------------------------------------------------------------

@dataclass(frozen=True)
class RunScript:
    label: str
    path: str

    kind: ClassVar[str] = "run_script"


@dataclass(frozen=True)
class AlterColumn:
    label: str
    table: str
    column: str
    spec: ColumnSpec

    kind: ClassVar[str] = "alter_column"


@dataclass(frozen=True)
class CustomAction:
    label: str
    func: Callable[..., Any]
    args: tuple[Any, ...] = ()
    kwargs: Mapping[str, Any] = field(default_factory=dict)

    kind: ClassVar[str] = "custom_action"

    @property
    def name(self) -> str:
        return getattr(self.func, "__qualname__", repr(self.func))


Task = Union[RunScript, AlterColumn, CustomAction]
TASK_TYPES: tuple[type, ...] = (RunScript, AlterColumn, CustomAction)


def run_sql(version: str, label: str | None = None) -> RunScript:
    """Task running the SQL script shipped for *version*."""
    return RunScript(
        label=label or f"Upgrade DB to {version}: SQL",
        path=f"{version}.sql",
    )


def alter_column(label: str, table: str, column: str, **spec: Any) -> AlterColumn:
    """Task bringing *table.column* in line with a ColumnSpec built from *spec*."""
    return AlterColumn(label=label, table=table, column=column, spec=ColumnSpec(**spec))


def custom_action(label: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> CustomAction:
    """Task calling ``func(ctx, *args, **kwargs)``."""
    return CustomAction(label=label, func=func, args=tuple(args), kwargs=dict(kwargs))


def describe(task: Task) -> dict[str, Any]:
    """Plain-dict summary of a task for the CLI and API."""
    summary: dict[str, Any] = {"kind": task.kind, "label": task.label}
    if isinstance(task, RunScript):
        summary["path"] = task.path
    elif isinstance(task, AlterColumn):
        summary["table"] = task.table
        summary["column"] = task.column
        summary["sql_type"] = task.spec.sql_type
        summary["required"] = task.spec.required
    elif isinstance(task, CustomAction):
        summary["action"] = task.name
    return summary
