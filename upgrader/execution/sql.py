"""SQL execution helpers: typed parameters and upgrade scripts.

Queries use positional placeholders ``%1``, ``%2`` ... bound from
``{n: (value, type_tag)}`` pairs, e.g.::

    execute(conn, "UPDATE civicrm_file SET upload_date = %1 WHERE id = %2", {
        1: (uploaded, "Timestamp"),
        2: (row.id, "Integer"),
    })

Every value is checked against its tag before it reaches the database.
"""

from __future__ import annotations

import datetime
import os
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Mapping

import sqlalchemy as sa
from jinja2 import StrictUndefined
from jinja2.sandbox import SandboxedEnvironment
from sqlalchemy.engine import Connection, CursorResult

_PLACEHOLDER = re.compile(r"%(\d+)\b")
_DATE_FORMATS = ("%Y%m%d%H%M%S", "%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S", "%Y%m%d", "%Y-%m-%d")

Params = Mapping[int, tuple[Any, str]]


# -------------------------------------------------------------------
# Typed parameters
# -------------------------------------------------------------------

def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{value!r} is not an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and re.fullmatch(r"-?\d+", value.strip()):
        return int(value)
    raise ValueError(f"{value!r} is not an integer")


def _to_positive(value: Any) -> int:
    number = _to_int(value)
    if number <= 0:
        raise ValueError(f"{value!r} is not a positive integer")
    return number


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{value!r} is not a number")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{value!r} is not a number") from exc


def _to_money(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"{value!r} is not a monetary amount")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{value!r} is not a monetary amount") from exc


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value in (0, 1, "0", "1"):
        return bool(int(value))
    raise ValueError(f"{value!r} is not a boolean")


def _to_string(value: Any) -> str:
    if isinstance(value, (str, int, float, Decimal)) and not isinstance(value, bool):
        return str(value)
    raise ValueError(f"{value!r} is not a string")


def _to_datetime(value: Any) -> datetime.datetime:
    if isinstance(value, datetime.datetime):
        return value
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.time())
    if isinstance(value, str):
        for fmt in _DATE_FORMATS:
            try:
                return datetime.datetime.strptime(value.strip(), fmt)
            except ValueError:
                continue
    raise ValueError(f"{value!r} is not a date")


# tag -> (coercer, bind type)
_PARAM_TYPES: dict[str, tuple[Callable[[Any], Any], sa.types.TypeEngine]] = {
    "Integer": (_to_int, sa.Integer()),
    "Int": (_to_int, sa.Integer()),
    "Positive": (_to_positive, sa.Integer()),
    "Float": (_to_float, sa.Float()),
    "Money": (_to_money, sa.Numeric(20, 2)),
    "Boolean": (_to_bool, sa.Boolean()),
    "String": (_to_string, sa.String()),
    "Text": (_to_string, sa.Text()),
    "Memo": (_to_string, sa.Text()),
    "Date": (_to_datetime, sa.DateTime()),
    "Timestamp": (_to_datetime, sa.DateTime()),
}


def coerce_param(value: Any, type_tag: str) -> Any:
    """Validate *value* against *type_tag* and return the value to bind."""
    entry = _PARAM_TYPES.get(type_tag)
    if entry is None:
        raise ValueError(f"Unknown parameter type {type_tag!r}")
    if value is None:
        return None
    return entry[0](value)


def compose_query(sql: str, params: Params | None = None) -> sa.TextClause:
    """Rewrite ``%n`` placeholders to typed named binds (``:pn``)."""
    params = params or {}
    binds: dict[str, sa.BindParameter] = {}

    def _replace(match: re.Match[str]) -> str:
        index = int(match.group(1))
        if index not in params:
            raise ValueError(f"No value supplied for placeholder %{index}")
        value, type_tag = params[index]
        name = f"p{index}"
        binds[name] = sa.bindparam(
            name, coerce_param(value, type_tag), type_=_PARAM_TYPES[type_tag][1]
        )
        return f":{name}"

    statement = _PLACEHOLDER.sub(_replace, sql)
    return sa.text(statement).bindparams(*binds.values())


def execute(connection: Connection, sql: str, params: Params | None = None) -> CursorResult:
    """Execute one parameterised statement on *connection*."""
    return connection.execute(compose_query(sql, params))


# -------------------------------------------------------------------
# Scripts
# -------------------------------------------------------------------

_env = SandboxedEnvironment(undefined=StrictUndefined, autoescape=False, keep_trailing_newline=True)


def resolve_script(script_dir: str, path: str) -> str:
    """Locate *path* under *script_dir*, accepting a ``.j2`` template in its place."""
    candidate = os.path.join(script_dir, path)
    if os.path.isfile(candidate):
        return candidate
    if os.path.isfile(candidate + ".j2"):
        return candidate + ".j2"
    raise FileNotFoundError(f"Upgrade script not found: {candidate}")


def load_script(script_dir: str, path: str, **context: Any) -> str:
    """Read a script, rendering it with Jinja2 when it is a ``.j2`` template."""
    full_path = resolve_script(script_dir, path)
    with open(full_path, encoding="utf-8") as fh:
        source = fh.read()
    if full_path.endswith(".j2"):
        return _env.from_string(source).render(**context)
    return source


def split_statements(script: str) -> list[str]:
    """Split a script on ``;`` outside quotes and comments.

    ``--`` and ``#`` line comments and ``/* */`` block comments are dropped.
    """
    statements: list[str] = []
    buf: list[str] = []
    i = 0
    n = len(script)
    quote: str | None = None

    while i < n:
        ch = script[i]
        nxt = script[i + 1] if i + 1 < n else ""

        if quote:
            buf.append(ch)
            if ch == "\\" and nxt:
                buf.append(nxt)
                i += 2
                continue
            if ch == quote:
                if nxt == quote:  # doubled quote escape
                    buf.append(nxt)
                    i += 2
                    continue
                quote = None
            i += 1
            continue

        if ch in ("'", '"', "`"):
            quote = ch
            buf.append(ch)
        elif (ch == "-" and nxt == "-") or ch == "#":
            end = script.find("\n", i)
            i = n if end == -1 else end
            continue
        elif ch == "/" and nxt == "*":
            end = script.find("*/", i + 2)
            i = n if end == -1 else end + 2
            continue
        elif ch == ";":
            _flush(buf, statements)
        else:
            buf.append(ch)
        i += 1

    _flush(buf, statements)
    return statements


def _flush(buf: list[str], statements: list[str]) -> None:
    statement = "".join(buf).strip()
    if statement:
        statements.append(statement)
    buf.clear()


def run_script(connection: Connection, script: str) -> int:
    """Execute every statement of *script* in order; return the count run."""
    statements = split_statements(script)
    for statement in statements:
        connection.exec_driver_sql(statement)
    return len(statements)
