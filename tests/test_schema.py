"""Tests for comparing reflected columns against a ColumnSpec."""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.dialects import mysql, sqlite

from upgrader.execution.schema import column_matches, normalize_default, type_shape
from upgrader.steps.tasks import ColumnSpec


def _spec(sql_type, **kwargs):
    kwargs.setdefault("input_type", "Number")
    return ColumnSpec(title="Column", sql_type=sql_type, **kwargs)


def _col(sa_type, nullable=True, default=None):
    return {"name": "c", "type": sa_type, "nullable": nullable, "default": default}


class TestIntegerColumns:
    def test_unsigned_matches_unsigned(self):
        spec = _spec("int unsigned", required=True, default=1)
        existing = _col(mysql.INTEGER(unsigned=True), nullable=False, default="'1'")
        assert column_matches(existing, spec)
        assert column_matches(existing, spec, mysql.dialect())

    def test_signed_does_not_match_unsigned(self):
        spec = _spec("int unsigned", required=True, default=1)
        existing = _col(mysql.INTEGER(unsigned=False), nullable=False, default="'1'")
        assert not column_matches(existing, spec)
        assert not column_matches(existing, spec, mysql.dialect())

    def test_size_class_differs(self):
        spec = _spec("int unsigned", required=True, default=1)
        existing = _col(mysql.TINYINT(unsigned=True), nullable=False, default="'1'")
        assert not column_matches(existing, spec)
        assert not column_matches(_col(mysql.BIGINT()), _spec("int"))
        assert column_matches(_col(mysql.BIGINT()), _spec("bigint"))

    def test_unsigned_flag_ignored_where_unsupported(self):
        spec = _spec("int unsigned")
        assert column_matches(_col(sqlite.INTEGER()), spec, sqlite.dialect())

    def test_boolean_reflected_as_tinyint(self):
        spec = _spec("boolean", input_type="CheckBox", required=True, default=False)
        existing = _col(mysql.TINYINT(display_width=1), nullable=False, default="'0'")
        assert column_matches(existing, spec)


class TestOtherColumns:
    def test_decimal_precision_and_scale(self):
        spec = _spec("decimal(20,2)")
        assert column_matches(_col(mysql.DECIMAL(20, 2)), spec)
        assert not column_matches(_col(mysql.DECIMAL(5, 2)), spec)
        assert not column_matches(_col(sa.Numeric(20, 4)), spec)

    def test_float_and_double(self):
        assert column_matches(_col(mysql.DOUBLE()), _spec("double"))
        assert not column_matches(_col(mysql.FLOAT()), _spec("double"))

    def test_text_size(self):
        spec = _spec("longtext", input_type="TextArea")
        assert column_matches(_col(mysql.LONGTEXT()), spec)
        assert not column_matches(_col(mysql.TEXT()), spec)
        assert column_matches(_col(sqlite.TEXT()), spec, sqlite.dialect())

    def test_varchar_length(self):
        spec = _spec("varchar(64)", input_type="Text")
        assert column_matches(_col(sa.VARCHAR(64)), spec)
        assert not column_matches(_col(sa.VARCHAR(32)), spec)

    def test_nullability_and_default(self):
        spec = _spec("varchar(15)", input_type="Text", required=True, default="Inline")
        assert column_matches(_col(sa.VARCHAR(15), nullable=False, default="'Inline'"), spec)
        assert not column_matches(_col(sa.VARCHAR(15), nullable=True, default="'Inline'"), spec)
        assert not column_matches(_col(sa.VARCHAR(15), nullable=False, default="'Tab'"), spec)


def test_type_shape_resolves_variants():
    spec_type = _spec("int unsigned").sa_type
    assert type_shape(spec_type, mysql.dialect()) == ("integer", "int", True)
    assert type_shape(spec_type, sqlite.dialect()) == ("integer", "int", False)


def test_normalize_default():
    assert normalize_default("('x')") == "x"
    assert normalize_default("current_timestamp()") == "CURRENT_TIMESTAMP"
    assert normalize_default(sa.text("CURRENT_TIMESTAMP")) == "CURRENT_TIMESTAMP"
    assert normalize_default(None) is None
