"""Dialect-independent SQL statement builders.

Concrete drivers call into these with their own ``SqlCodec`` and
``DriverFlags``; nothing here knows which dialect it is rendering for beyond
what the codec and the flags say.
"""
import re
from typing import Any, Dict, List, Optional, Sequence

from dbdrive.core.escape import SqlCodec
from dbdrive.models.flags import DriverFlags
from dbdrive.models.operation import (
    DatabaseTableOperation,
    OperationType,
    SelectFromTableOptions,
)
from dbdrive.models.schema import (
    DatabaseColumnConstraint,
    DatabaseForeignKeyReference,
    DatabaseTableColumn,
    DatabaseTableConstraint,
    DatabaseTableSchema,
)

# Literals and clock functions, rendered without parentheses
_SIMPLE_DEFAULT = re.compile(
    r"^\s*(?:NULL|TRUE|FALSE"
    r"|(?:CURRENT_TIMESTAMP|CURRENT_DATE|CURRENT_TIME|LOCALTIMESTAMP|LOCALTIME)(?:\(\d*\))?|NOW\(\d*\)"
    r"|[-+]?\d+(?:\.\d+)?|'(?:[^']|'')*')\s*$",
    re.IGNORECASE
)


def _default_expression_sql(expression: str) -> str:
    if _SIMPLE_DEFAULT.match(expression):
        return expression.strip()
    return wrap_paren(expression)


def default_clause(codec: SqlCodec, constraint: DatabaseColumnConstraint) -> Optional[str]:
    """``DEFAULT ...`` for a column, or None when it has no default."""
    if constraint.default_value is not None:
        return f"DEFAULT {codec.escape_value(constraint.default_value)}"
    if constraint.default_expression:
        return f"DEFAULT {_default_expression_sql(constraint.default_expression)}"
    return None


def wrap_paren(expression: str) -> str:
    """Parenthesize an expression unless it is already wrapped as a whole."""
    text = expression.strip()
    if text.startswith("(") and text.endswith(")"):
        depth = 0
        for index, char in enumerate(text):
            if char == "(":
                depth += 1
            elif char == ")":
                depth -= 1
                if depth == 0 and index < len(text) - 1:
                    break
        else:
            return text
    return f"({text})"


def column_list(codec: SqlCodec, names: Sequence[str]) -> str:
    """Comma-separated escaped column names."""
    return ", ".join(codec.escape_id(name) for name in names)


def foreign_key_reference(codec: SqlCodec, reference: DatabaseForeignKeyReference) -> str:
    """``REFERENCES table (columns)`` clause."""
    target = codec.qualify(reference.foreign_schema_name, reference.foreign_table_name)
    if reference.foreign_columns:
        return f"REFERENCES {target} ({column_list(codec, reference.foreign_columns)})"
    return f"REFERENCES {target}"


def column_definition(
    codec: SqlCodec,
    column: DatabaseTableColumn,
    include_key_constraints: bool = True
) -> str:
    """Render a column definition as used by CREATE TABLE and ADD COLUMN.

    Args:
        codec: Dialect codec used for every identifier and literal
        column: Column to render
        include_key_constraints: When False, PRIMARY KEY, UNIQUE and REFERENCES
            are left out so they can be managed as separate constraint changes

    Returns:
        Column definition text
    """
    constraint = column.constraint or DatabaseColumnConstraint()
    tokens = [codec.escape_id(column.name), column.type]

    if constraint.collate:
        tokens.append(f"COLLATE {codec.escape_id(constraint.collate)}")

    inline_primary_key = include_key_constraints and constraint.primary_key
    if inline_primary_key:
        tokens.append("PRIMARY KEY")
        order = (constraint.primary_key_order or "").upper()
        if order in ("ASC", "DESC"):
            tokens.append(order)
        if constraint.auto_increment and codec.auto_increment_requires_primary_key:
            tokens.append(codec.auto_increment_keyword)

    if constraint.not_null:
        tokens.append("NOT NULL")

    if include_key_constraints and constraint.unique:
        tokens.append("UNIQUE")

    default = default_clause(codec, constraint)
    if default:
        tokens.append(default)

    if constraint.on_update_expression:
        tokens.append(f"ON UPDATE {constraint.on_update_expression}")

    if constraint.auto_increment and not codec.auto_increment_requires_primary_key:
        tokens.append(codec.auto_increment_keyword)

    if constraint.generated_expression:
        generated = f"GENERATED ALWAYS AS {wrap_paren(constraint.generated_expression)}"
        if constraint.generated_type:
            generated = f"{generated} {constraint.generated_type.upper()}"
        tokens.append(generated)

    if constraint.check_expression:
        tokens.append(f"CHECK {wrap_paren(constraint.check_expression)}")

    if include_key_constraints and constraint.foreign_key:
        tokens.append(foreign_key_reference(codec, constraint.foreign_key))

    return " ".join(tokens)


def constraint_definition(codec: SqlCodec, constraint: DatabaseTableConstraint) -> str:
    """Render a table-level constraint, prefixed with its name when it has one."""
    prefix = f"CONSTRAINT {codec.escape_id(constraint.name)} " if constraint.name else ""

    if constraint.primary_key:
        return f"{prefix}PRIMARY KEY ({column_list(codec, constraint.primary_columns)})"
    if constraint.unique:
        return f"{prefix}UNIQUE ({column_list(codec, constraint.unique_columns)})"
    if constraint.foreign_key:
        reference = constraint.foreign_key
        return (
            f"{prefix}FOREIGN KEY ({column_list(codec, reference.columns)}) "
            f"{foreign_key_reference(codec, reference)}"
        )
    if constraint.check_expression is not None:
        return f"{prefix}CHECK {wrap_paren(constraint.check_expression)}"

    raise ValueError(f"Constraint {constraint.name or '<unnamed>'} has no kind set")


def create_table_statement(
    codec: SqlCodec,
    schema_name: Optional[str],
    table_name: str,
    columns: Sequence[DatabaseTableColumn],
    constraints: Sequence[DatabaseTableConstraint] = (),
    without_row_id: bool = False
) -> str:
    """Full CREATE TABLE statement."""
    lines = [column_definition(codec, column) for column in columns]
    lines.extend(constraint_definition(codec, constraint) for constraint in constraints)
    body = ",\n  ".join(lines)
    statement = f"CREATE TABLE {codec.qualify(schema_name, table_name)} (\n  {body}\n)"
    if without_row_id:
        statement += " WITHOUT ROWID"
    return statement


def where_clause(codec: SqlCodec, where: Dict[str, Any]) -> str:
    """``a = 1 AND b IS NULL`` built from column/value pairs."""
    terms = []
    for name, value in where.items():
        if value is None:
            terms.append(f"{codec.escape_id(name)} IS NULL")
        else:
            terms.append(f"{codec.escape_id(name)} = {codec.escape_value(value)}")
    return " AND ".join(terms)


def select_table_statement(
    codec: SqlCodec,
    flags: DriverFlags,
    table: DatabaseTableSchema,
    options: SelectFromTableOptions
) -> str:
    """SELECT used to browse a table page by page.

    The hidden row id is selected when the dialect has one and the table has
    no primary key to identify rows by.
    """
    projection = "*"
    if flags.support_row_id and not table.pk and not table.without_row_id:
        projection = "rowid, *"

    parts = [f"SELECT {projection} FROM {codec.qualify(table.schema_name, table.table_name)}"]
    if options.where_raw and options.where_raw.strip():
        parts.append(f"WHERE {options.where_raw.strip()}")
    if options.order_by:
        terms = ", ".join(
            f"{codec.escape_id(order.column_name)} {order.by.value}" for order in options.order_by
        )
        parts.append(f"ORDER BY {terms}")
    parts.append(f"LIMIT {int(options.limit)} OFFSET {int(options.offset)}")
    return " ".join(parts)


def table_operation_statement(
    codec: SqlCodec,
    flags: DriverFlags,
    schema_name: Optional[str],
    table_name: str,
    operation: DatabaseTableOperation
) -> str:
    """INSERT, UPDATE or DELETE statement for one row edit.

    Raises:
        ValueError: If an UPDATE or DELETE has no row key, or an edit has no values
    """
    target = codec.qualify(schema_name, table_name)

    if operation.operation == OperationType.INSERT:
        if not operation.values:
            raise ValueError("INSERT needs at least one column value")
        names = column_list(codec, operation.values.keys())
        values = ", ".join(codec.escape_value(v) for v in operation.values.values())
        statement = f"INSERT INTO {target}({names}) VALUES({values})"
        if flags.support_insert_returning:
            statement += " RETURNING *"
        return statement

    if not operation.where:
        raise ValueError(f"{operation.operation.value} without a row key would touch every row")

    if operation.operation == OperationType.UPDATE:
        if not operation.values:
            raise ValueError("UPDATE needs at least one column value")
        assignments = ", ".join(
            f"{codec.escape_id(name)} = {codec.escape_value(value)}"
            for name, value in operation.values.items()
        )
        statement = f"UPDATE {target} SET {assignments} WHERE {where_clause(codec, operation.where)}"
        if flags.support_update_returning:
            statement += " RETURNING *"
        return statement

    return f"DELETE FROM {target} WHERE {where_clause(codec, operation.where)}"


def find_first_statement(
    codec: SqlCodec,
    schema_name: Optional[str],
    table_name: str,
    key: Dict[str, Any]
) -> str:
    """SELECT of the first row matching a column/value key."""
    statement = f"SELECT * FROM {codec.qualify(schema_name, table_name)}"
    if key:
        statement += f" WHERE {where_clause(codec, key)}"
    return f"{statement} LIMIT 1"


def drop_table_statement(codec: SqlCodec, schema_name: Optional[str], table_name: str) -> str:
    return f"DROP TABLE {codec.qualify(schema_name, table_name)}"


def empty_table_statement(codec: SqlCodec, schema_name: Optional[str], table_name: str) -> str:
    return f"DELETE FROM {codec.qualify(schema_name, table_name)}"


def effective_primary_key(
    columns: Sequence[DatabaseTableColumn],
    constraints: Sequence[DatabaseTableConstraint]
) -> List[str]:
    """Primary key columns whether declared on the columns or as a table constraint."""
    for constraint in constraints:
        if constraint.primary_key:
            return list(constraint.primary_columns)
    return [
        column.name for column in columns
        if column.constraint is not None and column.constraint.primary_key
    ]
