"""Parser for stored CREATE TABLE and CREATE TRIGGER scripts."""
import logging
import re
from typing import Callable, Dict, List, Optional, Tuple

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError, TokenError
from sqlglot.tokens import TokenType

from dbdrive.core.errors import IncompleteMetadataError
from dbdrive.models.schema import (
    DatabaseColumnConstraint,
    DatabaseForeignKeyReference,
    DatabaseTableColumn,
    DatabaseTableConstraint,
    DatabaseTableSchema,
    DatabaseTriggerSchema,
)

logger = logging.getLogger(__name__)

# Registry of dialect-specific preprocessors
# Key: dialect name (e.g., 'sqlite')
# Value: List of preprocessor functions
_DIALECT_PREPROCESSORS: Dict[str, List[Callable[[str], str]]] = {}

_WITHOUT_ROWID = re.compile(r"\)\s*WITHOUT\s+ROWID\b", re.IGNORECASE)
_TABLE_OPTIONS = re.compile(r"\)((?:\s*,?\s*(?:WITHOUT\s+ROWID|STRICT))+)\s*;?\s*$", re.IGNORECASE)

# Words that end the type of a column definition
_COLUMN_CONSTRAINT_WORDS = {
    "CONSTRAINT", "PRIMARY", "NOT", "NULL", "UNIQUE", "CHECK", "DEFAULT", "COLLATE",
    "REFERENCES", "GENERATED", "AS", "AUTOINCREMENT", "AUTO_INCREMENT",
}
# Words that start a table constraint instead of a column
_TABLE_CONSTRAINT_WORDS = {"CONSTRAINT", "PRIMARY", "UNIQUE", "CHECK", "FOREIGN"}


def register_dialect_preprocessor(dialect: str, func: Callable[[str], str]) -> None:
    """Register a dialect-specific SQL preprocessor.

    Preprocessors run before sqlglot parsing and rewrite syntax sqlglot does
    not handle into something it does.

    Args:
        dialect: SQL dialect name (e.g., 'sqlite')
        func: Function taking SQL text and returning modified SQL text
    """
    _DIALECT_PREPROCESSORS.setdefault(dialect, []).append(func)
    logger.debug("Registered preprocessor for dialect '%s': %s", dialect, func.__name__)


def _preprocess_sql(sql: str, dialect: str) -> str:
    original_sql = sql
    for preprocessor in _DIALECT_PREPROCESSORS.get(dialect, []):
        sql = preprocessor(sql)
    if sql != original_sql:
        logger.debug("SQL was modified by preprocessor for dialect '%s'", dialect)
    return sql


def _strip_sqlite_table_options(sql: str) -> str:
    """Drop trailing ``WITHOUT ROWID`` / ``STRICT`` table options.

    Examples:
        CREATE TABLE t (a INTEGER PRIMARY KEY) WITHOUT ROWID -> CREATE TABLE t (a INTEGER PRIMARY KEY)
    """
    return _TABLE_OPTIONS.sub(")", sql)


register_dialect_preprocessor("sqlite", _strip_sqlite_table_options)


def unquote_identifier(text: str) -> str:
    """Strip SQL identifier quoting (``"a""b"``, backticks or brackets)."""
    text = text.strip()
    if len(text) >= 2:
        if text[0] == '"' and text[-1] == '"':
            return text[1:-1].replace('""', '"')
        if text[0] == "`" and text[-1] == "`":
            return text[1:-1].replace("``", "`")
        if text[0] == "[" and text[-1] == "]":
            return text[1:-1]
    return text


def _name_of(node: exp.Expression) -> str:
    if isinstance(node, exp.Ordered):
        node = node.this
    if isinstance(node, (exp.Column, exp.Identifier)):
        return node.name
    return unquote_identifier(node.sql())


def _names_of(nodes) -> List[str]:
    return [_name_of(node) for node in nodes or []]


def _reference_of(reference: exp.Reference, columns: List[str]) -> Optional[DatabaseForeignKeyReference]:
    target = reference.this
    foreign_columns: List[str] = []
    if isinstance(target, exp.Schema):
        foreign_columns = _names_of(target.expressions)
        target = target.this
    if not isinstance(target, exp.Table):
        return None
    return DatabaseForeignKeyReference(
        columns=columns,
        foreign_schema_name=target.db or None,
        foreign_table_name=target.name,
        foreign_columns=foreign_columns,
    )


def parse_create_table(
    sql: str,
    dialect: str = "sqlite",
    schema_name: Optional[str] = None
) -> Optional[DatabaseTableSchema]:
    """Parse a CREATE TABLE script into a table definition.

    Never raises; returns None and logs a warning when the script cannot be
    understood, so callers can fall back to catalog-only metadata.

    Args:
        sql: CREATE TABLE statement as stored by the database
        dialect: sqlglot dialect to parse with
        schema_name: Schema to record when the script is unqualified

    Returns:
        DatabaseTableSchema or None
    """
    try:
        processed_sql = _preprocess_sql(sql, dialect)
        stmt = sqlglot.parse_one(processed_sql, read=dialect)
    except (ParseError, TokenError) as e:
        logger.warning("Failed to parse CREATE TABLE script: %s", e)
        return None

    if not isinstance(stmt, exp.Create):
        logger.warning("Script is not a CREATE statement: %s", type(stmt).__name__)
        return None

    schema_def = stmt.this
    if not isinstance(schema_def, exp.Schema) or not isinstance(schema_def.this, exp.Table):
        logger.warning("CREATE TABLE script has no column list")
        return None

    declared_types = declared_column_types(processed_sql, dialect)
    table_expr = schema_def.this
    table = DatabaseTableSchema(
        schema_name=table_expr.db or schema_name or "",
        table_name=table_expr.name,
        without_row_id=bool(_WITHOUT_ROWID.search(sql)),
        create_script=sql,
    )

    for item in schema_def.expressions:
        if isinstance(item, exp.ColumnDef):
            table.columns.append(_column_from_def(item, dialect, declared_types.get(item.name)))
        else:
            constraint = _table_constraint(item)
            if constraint is not None:
                table.constraints.append(constraint)
            else:
                logger.debug("Skipping table item %s", type(item).__name__)

    table_pk = next((c for c in table.constraints if c.primary_key), None)
    if table_pk is not None:
        table.pk = list(table_pk.primary_columns)
    else:
        table.pk = [
            column.name for column in table.columns
            if column.constraint is not None and column.constraint.primary_key
        ]
    table.auto_increment = any(
        column.constraint is not None and column.constraint.auto_increment
        for column in table.columns
    )
    return table


def declared_column_types(sql: str, dialect: str = "sqlite") -> Dict[str, str]:
    """Column types exactly as written in a CREATE TABLE script.

    sqlglot normalizes types when it renders them (``VARCHAR(50)`` comes back
    as ``TEXT(50)`` for SQLite), so the declared text is cut out of the
    script by token positions instead.

    Returns:
        Column name to declared type; columns declared without a type map to ""
    """
    try:
        tokens = sqlglot.tokenize(sql, read=dialect)
    except TokenError as e:
        logger.warning("Failed to tokenize CREATE TABLE script: %s", e)
        return {}

    items: List[list] = []
    current: Optional[list] = None
    depth = 0
    for token in tokens:
        if token.token_type == TokenType.L_PAREN:
            depth += 1
            if depth == 1 and current is None:
                current = []
                continue
        elif token.token_type == TokenType.R_PAREN:
            depth -= 1
            if depth == 0 and current is not None:
                items.append(current)
                break
        elif token.token_type == TokenType.COMMA and depth == 1 and current is not None:
            items.append(current)
            current = []
            continue
        if current is not None:
            current.append(token)

    types = {}
    for item in items:
        if not item:
            continue
        name_token = item[0]
        quoted = name_token.token_type == TokenType.IDENTIFIER
        if not quoted and name_token.text.upper() in _TABLE_CONSTRAINT_WORDS:
            continue

        type_tokens = []
        nesting = 0
        for token in item[1:]:
            if token.token_type == TokenType.L_PAREN:
                nesting += 1
            elif token.token_type == TokenType.R_PAREN:
                nesting -= 1
            elif (nesting == 0 and token.token_type != TokenType.IDENTIFIER
                  and token.text.upper() in _COLUMN_CONSTRAINT_WORDS):
                break
            type_tokens.append(token)

        if type_tokens:
            types[name_token.text] = sql[type_tokens[0].start:type_tokens[-1].end + 1]
        else:
            types[name_token.text] = ""
    return types


def _column_from_def(
    col_expr: exp.ColumnDef,
    dialect: str = "sqlite",
    declared_type: Optional[str] = None
) -> DatabaseTableColumn:
    """Extract a column and its inline constraints from a ColumnDef expression."""
    constraint = DatabaseColumnConstraint()
    kind = col_expr.args.get("kind")
    if declared_type is not None:
        data_type = declared_type
    else:
        data_type = kind.sql(dialect=dialect) if kind is not None else ""

    for column_constraint in col_expr.constraints or []:
        if not isinstance(column_constraint, exp.ColumnConstraint):
            continue
        if column_constraint.this is not None and constraint.name is None:
            constraint.name = _name_of(column_constraint.this)

        item = column_constraint.kind
        if isinstance(item, exp.PrimaryKeyColumnConstraint):
            constraint.primary_key = True
            desc = item.args.get("desc")
            if desc is not None:
                constraint.primary_key_order = "DESC" if desc else "ASC"
        elif isinstance(item, exp.AutoIncrementColumnConstraint):
            constraint.auto_increment = True
        elif isinstance(item, exp.NotNullColumnConstraint):
            constraint.not_null = not item.args.get("allow_null")
        elif isinstance(item, exp.UniqueColumnConstraint):
            constraint.unique = True
        elif isinstance(item, exp.DefaultColumnConstraint):
            value = item.this
            if isinstance(value, exp.Literal) and value.is_string:
                constraint.default_value = value.this
            elif isinstance(value, exp.Paren):
                constraint.default_expression = value.this.sql(dialect=dialect)
            else:
                constraint.default_expression = value.sql(dialect=dialect)
        elif isinstance(item, exp.CheckColumnConstraint):
            constraint.check_expression = item.this.sql(dialect=dialect)
        elif isinstance(item, exp.CollateColumnConstraint):
            constraint.collate = _name_of(item.this)
        elif isinstance(item, exp.ComputedColumnConstraint):
            constraint.generated_expression = item.this.sql(dialect=dialect)
            constraint.generated_type = "STORED" if item.args.get("persisted") else "VIRTUAL"
        elif isinstance(item, exp.GeneratedAsIdentityColumnConstraint):
            expression = item.args.get("expression")
            if expression is not None:
                constraint.generated_expression = expression.sql(dialect=dialect)
                constraint.generated_type = "VIRTUAL"
            else:
                constraint.auto_increment = True
        elif isinstance(item, exp.Reference):
            constraint.foreign_key = _reference_of(item, [col_expr.name])

    return DatabaseTableColumn(name=col_expr.name, type=data_type, constraint=constraint)


def _table_constraint(item: exp.Expression, name: Optional[str] = None) -> Optional[DatabaseTableConstraint]:
    """Map a table-level constraint expression, unwrapping ``CONSTRAINT name``."""
    if isinstance(item, exp.Constraint):
        inner = item.expressions[0] if item.expressions else None
        if inner is None:
            return None
        return _table_constraint(inner, name=_name_of(item.this))

    if isinstance(item, exp.PrimaryKey):
        return DatabaseTableConstraint(
            name=name, primary_key=True, primary_columns=_names_of(item.expressions)
        )
    if isinstance(item, exp.UniqueColumnConstraint):
        target = item.this
        columns = _names_of(target.expressions) if isinstance(target, exp.Schema) else []
        return DatabaseTableConstraint(name=name, unique=True, unique_columns=columns)
    if isinstance(item, exp.ForeignKey):
        reference = item.args.get("reference")
        if reference is None:
            return None
        foreign_key = _reference_of(reference, _names_of(item.expressions))
        if foreign_key is None:
            return None
        return DatabaseTableConstraint(name=name, foreign_key=foreign_key)
    if isinstance(item, exp.CheckColumnConstraint):
        return DatabaseTableConstraint(name=name, check_expression=item.this.sql(dialect="sqlite"))
    return None


_IDENT = r'(?:"(?:[^"]|"")+"|`(?:[^`]|``)+`|\[[^\]]+\]|[\w$]+)'
_TRIGGER_PATTERN = re.compile(
    r"^\s*CREATE\s+(?:TEMP\s+|TEMPORARY\s+)?TRIGGER\s+(?:IF\s+NOT\s+EXISTS\s+)?"
    rf"(?:(?P<schema>{_IDENT})\s*\.\s*)?(?P<name>{_IDENT})\s+"
    r"(?:(?P<when>BEFORE|AFTER|INSTEAD\s+OF)\s+)?"
    r"(?P<operation>DELETE|INSERT|UPDATE)(?:\s+OF\s+(?P<columns>.+?))?\s+"
    rf"ON\s+(?P<table>{_IDENT})"
    r"(?:\s+FOR\s+EACH\s+ROW)?"
    r"(?:\s+WHEN\s+(?P<when_expression>.+?))?"
    r"\s+BEGIN\s+(?P<statement>.*?)\s*END\s*;?\s*$",
    re.IGNORECASE | re.DOTALL,
)


def parse_create_trigger(sql: str, schema_name: str) -> DatabaseTriggerSchema:
    """Split a stored CREATE TRIGGER script into its clauses.

    Raises:
        IncompleteMetadataError: If the script does not look like CREATE TRIGGER
    """
    match = _TRIGGER_PATTERN.match(sql or "")
    if not match:
        raise IncompleteMetadataError("Unrecognized CREATE TRIGGER script", source="sqlite_master")

    columns = None
    if match.group("columns"):
        columns = [unquote_identifier(c) for c in match.group("columns").split(",")]

    when = match.group("when")
    return DatabaseTriggerSchema(
        name=unquote_identifier(match.group("name")),
        schema_name=unquote_identifier(match.group("schema")) if match.group("schema") else schema_name,
        table_name=unquote_identifier(match.group("table")),
        when=" ".join(when.upper().split()) if when else None,
        operation=match.group("operation").upper(),
        column_names=columns,
        when_expression=match.group("when_expression").strip() if match.group("when_expression") else None,
        statement=match.group("statement").strip(),
    )


def expression_columns(expression: str, dialect: str = "sqlite") -> Optional[List[str]]:
    """Names of the columns a CHECK or generated expression reads, or None if it cannot be parsed."""
    try:
        parsed = sqlglot.parse_one(expression, read=dialect)
    except (ParseError, TokenError) as e:
        logger.warning("Failed to parse expression %r: %s", expression, e)
        return None
    return [column.name for column in parsed.find_all(exp.Column)]


def rename_expression_columns(expression: str, renames: Dict[str, str], dialect: str = "sqlite") -> str:
    """Rewrite column references in an expression; other text is re-rendered by sqlglot.

    Raises:
        ParseError: If the expression is not valid SQL
    """
    def _rename(node: exp.Expression) -> exp.Expression:
        if isinstance(node, exp.Column) and not node.table and node.name in renames:
            return exp.column(renames[node.name], quoted=True)
        return node

    return sqlglot.parse_one(expression, read=dialect).transform(_rename).sql(dialect=dialect)


def split_qualified_name(name: str) -> Tuple[Optional[str], str]:
    """Split ``schema.table`` into its parts; the schema is None when absent."""
    match = re.match(rf"^\s*(?:({_IDENT})\s*\.\s*)?({_IDENT})\s*$", name)
    if not match:
        return None, name.strip()
    schema = unquote_identifier(match.group(1)) if match.group(1) else None
    return schema, unquote_identifier(match.group(2))
