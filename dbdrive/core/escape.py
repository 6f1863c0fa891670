"""Per-dialect identifier and value quoting.

Every identifier and literal that ends up in generated SQL passes through a
``SqlCodec``. The codecs only produce single, self-contained tokens: a value
can never close its surrounding quote, whatever it contains.
"""
import datetime
import math
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from dbdrive.models.flags import SqlDialect


def _mysql_string(value: str) -> str:
    # Backslashes first so the escapes added below are not doubled again.
    escaped = value.replace("\\", "\\\\").replace("'", "''").replace("\0", "\\0")
    return f"'{escaped}'"


def _standard_string(value: str) -> str:
    if "\0" in value:
        raise ValueError("String literals cannot contain NUL characters")
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def _hex_literal(value: bytes) -> str:
    return f"X'{value.hex().upper()}'"


def _bytea_literal(value: bytes) -> str:
    # Assumes standard_conforming_strings = on (the server default since 9.1).
    return f"'\\x{value.hex().upper()}'::bytea"


class SqlCodec:
    """Quoting rules and the few dialect keywords statement builders need."""

    def __init__(
        self,
        dialect: SqlDialect,
        quote_char: str,
        escape_string: Callable[[str], str],
        escape_bytes: Callable[[bytes], str],
        true_literal: str,
        false_literal: str,
        auto_increment_keyword: str,
        auto_increment_requires_primary_key: bool = False
    ):
        self.dialect = dialect
        self.quote_char = quote_char
        self._escape_string = escape_string
        self._escape_bytes = escape_bytes
        self.true_literal = true_literal
        self.false_literal = false_literal
        self.auto_increment_keyword = auto_increment_keyword
        self.auto_increment_requires_primary_key = auto_increment_requires_primary_key

    def escape_id(self, identifier: str) -> str:
        """Quote an identifier, doubling any embedded quote glyph."""
        if not isinstance(identifier, str):
            raise TypeError(f"Identifier must be a string, got {type(identifier).__name__}")
        quote = self.quote_char
        return f"{quote}{identifier.replace(quote, quote * 2)}{quote}"

    def escape_value(self, value: Any) -> str:
        """Render a Python value as a SQL literal.

        Raises:
            TypeError: If the value has no SQL literal form
            ValueError: If the value cannot be represented in this dialect
        """
        if value is None:
            return "NULL"
        # bool before int: bool is an int subclass
        if isinstance(value, bool):
            return self.true_literal if value else self.false_literal
        if isinstance(value, int):
            return str(value)
        if isinstance(value, float):
            if not math.isfinite(value):
                raise ValueError(f"Non-finite float {value!r} has no SQL literal")
            return repr(value)
        if isinstance(value, Decimal):
            if not value.is_finite():
                raise ValueError(f"Non-finite decimal {value!r} has no SQL literal")
            return format(value, "f")
        if isinstance(value, (bytes, bytearray, memoryview)):
            return self._escape_bytes(bytes(value))
        if isinstance(value, datetime.datetime):
            return self._escape_string(value.isoformat(sep=" "))
        if isinstance(value, (datetime.date, datetime.time)):
            return self._escape_string(value.isoformat())
        if isinstance(value, str):
            return self._escape_string(value)
        raise TypeError(f"{type(value).__name__} is not a supported SQL value")

    def qualify(self, schema_name: Optional[str], name: str) -> str:
        """Escaped ``schema.name`` reference; the schema part is omitted when empty."""
        if schema_name:
            return f"{self.escape_id(schema_name)}.{self.escape_id(name)}"
        return self.escape_id(name)


MYSQL_CODEC = SqlCodec(
    dialect=SqlDialect.MYSQL,
    quote_char="`",
    escape_string=_mysql_string,
    escape_bytes=_hex_literal,
    true_literal="TRUE",
    false_literal="FALSE",
    auto_increment_keyword="AUTO_INCREMENT",
)

POSTGRES_CODEC = SqlCodec(
    dialect=SqlDialect.POSTGRES,
    quote_char='"',
    escape_string=_standard_string,
    escape_bytes=_bytea_literal,
    true_literal="TRUE",
    false_literal="FALSE",
    auto_increment_keyword="GENERATED BY DEFAULT AS IDENTITY",
)

SQLITE_CODEC = SqlCodec(
    dialect=SqlDialect.SQLITE,
    quote_char='"',
    escape_string=_standard_string,
    escape_bytes=_hex_literal,
    true_literal="1",
    false_literal="0",
    auto_increment_keyword="AUTOINCREMENT",
    auto_increment_requires_primary_key=True,
)

CODECS: Dict[SqlDialect, SqlCodec] = {
    SqlDialect.MYSQL: MYSQL_CODEC,
    SqlDialect.POSTGRES: POSTGRES_CODEC,
    SqlDialect.SQLITE: SQLITE_CODEC,
}


def get_codec(dialect: SqlDialect) -> SqlCodec:
    """Return the codec registered for a dialect."""
    return CODECS[dialect]
