"""PostgreSQL driver."""
import logging
from typing import Any, Dict, List, Optional

from pydantic import field_validator

from dbdrive.core.diff import AlterSyntax
from dbdrive.core.errors import IncompleteMetadataError, UnsupportedOperationError
from dbdrive.core.escape import POSTGRES_CODEC
from dbdrive.core.introspect import CatalogRow, SchemaFold, parse_catalog_rows, truthy
from dbdrive.core.statements import default_clause
from dbdrive.core.type_selector import (
    ColumnTypeGroup,
    ColumnTypeParameter,
    ColumnTypeSelector,
    ColumnTypeSuggestion,
    fixed_point_preview,
    scale_within_precision,
)
from dbdrive.drivers.base import Driver
from dbdrive.models.flags import DriverFlags, SqlDialect
from dbdrive.models.schema import (
    DatabaseColumnConstraint,
    DatabaseForeignKeyReference,
    DatabaseSchemas,
    DatabaseTableColumn,
    DatabaseTableConstraint,
    DatabaseTableSchema,
    DatabaseTriggerSchema,
    SchemaItemType,
)

logger = logging.getLogger(__name__)

SYSTEM_SCHEMAS = ("information_schema", "pg_catalog", "pg_toast")


def _schema_filter(column: str) -> str:
    excluded = ", ".join(POSTGRES_CODEC.escape_value(name) for name in SYSTEM_SCHEMAS)
    return f"{column} NOT IN ({excluded}) AND {column} !~ '^pg_(toast_)?temp_'"


class PgSchemaRow(CatalogRow):
    schema_name: str


class PgTableRow(CatalogRow):
    table_schema: str
    table_name: str
    table_type: str = "BASE TABLE"


class PgColumnRow(CatalogRow):
    table_schema: str
    table_name: str
    column_name: str
    data_type: str
    not_null: Any = False
    column_default: Optional[str] = None
    identity: Optional[str] = ""
    generated: Optional[str] = ""


def _parse_pg_array(value: Any) -> List[str]:
    """Accept a driver-decoded list or the ``{a,"b c"}`` text form."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    text = str(value).strip()
    if text.startswith("{") and text.endswith("}"):
        text = text[1:-1]
    if not text:
        return []
    return [item.strip().strip('"') for item in text.split(",")]


class PgConstraintRow(CatalogRow):
    table_schema: str
    table_name: str
    constraint_name: str
    constraint_type: str
    columns: List[str] = []
    foreign_schema_name: Optional[str] = None
    foreign_table_name: Optional[str] = None
    foreign_columns: List[str] = []
    definition: Optional[str] = None

    @field_validator("columns", "foreign_columns", mode="before")
    @classmethod
    def _arrays(cls, value):
        return _parse_pg_array(value)


def _column_from_row(row: PgColumnRow) -> DatabaseTableColumn:
    constraint = DatabaseColumnConstraint(not_null=truthy(row.not_null))
    default = row.column_default
    if row.generated == "s":
        constraint.generated_expression = default
        constraint.generated_type = "STORED"
    elif row.identity in ("a", "d"):
        constraint.auto_increment = True
    elif default and default.lower().startswith("nextval("):
        constraint.auto_increment = True
    elif default is not None:
        constraint.default_expression = default
    return DatabaseTableColumn(name=row.column_name, type=row.data_type, constraint=constraint)


def _check_expression(definition: Optional[str]) -> Optional[str]:
    if not definition:
        return None
    text = definition.strip()
    if text.upper().endswith(" NOT VALID"):
        text = text[: -len(" NOT VALID")]
    if text.upper().startswith("CHECK"):
        text = text[len("CHECK"):].strip()
    return text


def _constraint_from_row(row: PgConstraintRow) -> Optional[DatabaseTableConstraint]:
    kind = row.constraint_type
    if kind == "p":
        return DatabaseTableConstraint(
            name=row.constraint_name, primary_key=True, primary_columns=row.columns
        )
    if kind == "u":
        return DatabaseTableConstraint(
            name=row.constraint_name, unique=True, unique_columns=row.columns
        )
    if kind == "f" and row.foreign_table_name:
        return DatabaseTableConstraint(
            name=row.constraint_name,
            foreign_key=DatabaseForeignKeyReference(
                columns=row.columns,
                foreign_schema_name=row.foreign_schema_name,
                foreign_table_name=row.foreign_table_name,
                foreign_columns=row.foreign_columns,
            ),
        )
    if kind == "c":
        return DatabaseTableConstraint(
            name=row.constraint_name, check_expression=_check_expression(row.definition)
        )
    logger.debug("Skipping constraint %s of type %s", row.constraint_name, kind)
    return None


_COLUMN_QUERY = """SELECT n.nspname AS table_schema, c.relname AS table_name, a.attname AS column_name,
  pg_catalog.format_type(a.atttypid, a.atttypmod) AS data_type,
  a.attnotnull AS not_null,
  pg_catalog.pg_get_expr(d.adbin, d.adrelid) AS column_default,
  a.attidentity AS identity,
  a.attgenerated AS generated
FROM pg_catalog.pg_attribute a
JOIN pg_catalog.pg_class c ON c.oid = a.attrelid
JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
LEFT JOIN pg_catalog.pg_attrdef d ON d.adrelid = a.attrelid AND d.adnum = a.attnum
WHERE a.attnum > 0 AND NOT a.attisdropped AND c.relkind IN ('r', 'p', 'v', 'm', 'f') AND {where}
ORDER BY n.nspname, c.relname, a.attnum"""

_CONSTRAINT_QUERY = """SELECT n.nspname AS table_schema, c.relname AS table_name,
  con.conname AS constraint_name, con.contype AS constraint_type,
  ARRAY(SELECT a.attname FROM unnest(con.conkey) WITH ORDINALITY AS k(attnum, ord)
        JOIN pg_catalog.pg_attribute a ON a.attrelid = con.conrelid AND a.attnum = k.attnum
        ORDER BY k.ord) AS columns,
  fn.nspname AS foreign_schema_name, fc.relname AS foreign_table_name,
  ARRAY(SELECT a.attname FROM unnest(con.confkey) WITH ORDINALITY AS k(attnum, ord)
        JOIN pg_catalog.pg_attribute a ON a.attrelid = con.confrelid AND a.attnum = k.attnum
        ORDER BY k.ord) AS foreign_columns,
  pg_catalog.pg_get_constraintdef(con.oid) AS definition
FROM pg_catalog.pg_constraint con
JOIN pg_catalog.pg_class c ON c.oid = con.conrelid
JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
LEFT JOIN pg_catalog.pg_class fc ON fc.oid = con.confrelid
LEFT JOIN pg_catalog.pg_namespace fn ON fn.oid = fc.relnamespace
WHERE {where}
ORDER BY n.nspname, c.relname, con.conname"""


def _apply_constraints(table: DatabaseTableSchema, rows: List[PgConstraintRow]) -> None:
    for row in rows:
        constraint = _constraint_from_row(row)
        if constraint is None:
            continue
        table.constraints.append(constraint)
        if constraint.primary_key:
            table.pk = list(constraint.primary_columns)
    table.auto_increment = any(
        column.constraint is not None and column.constraint.auto_increment
        for column in table.columns
        if column.name in table.pk
    )


class PostgresAlterSyntax(AlterSyntax):
    """``ALTER TABLE`` grammar for PostgreSQL.

    Every attribute change is its own ``ALTER COLUMN`` clause against the old
    name; the rename comes last.
    """

    def change_column(self, table_ref, old, new):
        prefix = f"ALTER TABLE {table_ref} ALTER COLUMN {self.codec.escape_id(old.name)}"
        old_c = old.constraint or DatabaseColumnConstraint()
        new_c = new.constraint or DatabaseColumnConstraint()
        statements = []

        if old.type != new.type or old_c.collate != new_c.collate:
            statement = f"{prefix} TYPE {new.type}"
            if new_c.collate:
                statement += f" COLLATE {self.codec.escape_id(new_c.collate)}"
            statements.append(statement)

        if old_c.not_null != new_c.not_null:
            statements.append(f"{prefix} {'SET' if new_c.not_null else 'DROP'} NOT NULL")

        old_default = default_clause(self.codec, old_c)
        new_default = default_clause(self.codec, new_c)
        if old_default != new_default:
            statements.append(f"{prefix} SET {new_default}" if new_default else f"{prefix} DROP DEFAULT")

        if old_c.auto_increment != new_c.auto_increment:
            if new_c.auto_increment:
                statements.append(f"{prefix} ADD GENERATED BY DEFAULT AS IDENTITY")
            else:
                statements.append(f"{prefix} DROP IDENTITY IF EXISTS")

        if old.name != new.name:
            statements.append(
                f"ALTER TABLE {table_ref} RENAME COLUMN {self.codec.escape_id(old.name)} "
                f"TO {self.codec.escape_id(new.name)}"
            )
        return statements

    def drop_constraint(self, table_ref, constraint):
        if not constraint.name:
            raise UnsupportedOperationError(
                f"drop {constraint.kind} constraint", "the constraint has no name"
            )
        return f"ALTER TABLE {table_ref} DROP CONSTRAINT {self.codec.escape_id(constraint.name)}"

    def rename_table(self, schema_name, old_name, new_name):
        return (
            f"ALTER TABLE {self.codec.qualify(schema_name, old_name)} "
            f"RENAME TO {self.codec.escape_id(new_name)}"
        )


POSTGRES_TYPE_SELECTOR = ColumnTypeSelector(
    type="text",
    type_suggestions=[
        ColumnTypeGroup(name="String", suggestions=[
            ColumnTypeSuggestion(
                name="char",
                parameters=[ColumnTypeParameter(
                    name="length", default="1", minimum=1, maximum=10485760, required=False
                )],
                description="Fixed-length, blank padded",
            ),
            ColumnTypeSuggestion(
                name="varchar",
                parameters=[ColumnTypeParameter(
                    name="length", default="255", minimum=1, maximum=10485760
                )],
                description="Variable-length with limit",
            ),
            ColumnTypeSuggestion(name="text", description="Variable unlimited length"),
        ]),
        ColumnTypeGroup(name="Number", suggestions=[
            ColumnTypeSuggestion(name="smallint", description="2 byte integer"),
            ColumnTypeSuggestion(name="integer", description="4 byte integer"),
            ColumnTypeSuggestion(name="bigint", description="8 byte integer"),
            ColumnTypeSuggestion(name="real", description="4 byte float"),
            ColumnTypeSuggestion(name="double precision", description="8 byte float"),
            ColumnTypeSuggestion(
                name="numeric",
                parameters=[
                    ColumnTypeParameter(
                        name="precision", description="Total number of digits",
                        default="10", minimum=1, maximum=1000
                    ),
                    ColumnTypeParameter(
                        name="scale", description="Number of digits after the decimal point",
                        default="2", minimum=0, maximum=1000, required=False
                    ),
                ],
                description=fixed_point_preview,
                rule=scale_within_precision,
            ),
            ColumnTypeSuggestion(name="serial", description="Auto-incrementing 4 byte integer"),
            ColumnTypeSuggestion(name="bigserial", description="Auto-incrementing 8 byte integer"),
        ]),
        ColumnTypeGroup(name="Date and Time", suggestions=[
            ColumnTypeSuggestion(name="date", description="Calendar date"),
            ColumnTypeSuggestion(name="time", description="Time of day"),
            ColumnTypeSuggestion(name="timestamp", description="Date and time"),
            ColumnTypeSuggestion(name="timestamptz", description="Date and time with time zone"),
            ColumnTypeSuggestion(name="interval", description="Time span"),
        ]),
        ColumnTypeGroup(name="Other", suggestions=[
            ColumnTypeSuggestion(name="boolean", description="true or false"),
            ColumnTypeSuggestion(name="uuid", description="Universally unique identifier"),
            ColumnTypeSuggestion(name="json", description="JSON text"),
            ColumnTypeSuggestion(name="jsonb", description="Binary JSON"),
            ColumnTypeSuggestion(name="bytea", description="Binary data"),
        ]),
    ],
)


class PostgresDriver(Driver):
    """Driver for PostgreSQL servers."""

    FLAGS = DriverFlags(
        dialect=SqlDialect.POSTGRES,
        default_schema="public",
        optional_schema=False,
        support_big_int=False,
        support_modify_column=True,
        support_create_update_table=True,
        mismatch_detection=False,
        support_use_statement=False,
        support_row_id=False,
        support_insert_returning=True,
        support_update_returning=True,
    )
    codec = POSTGRES_CODEC
    column_type_selector = POSTGRES_TYPE_SELECTOR
    alter_syntax = PostgresAlterSyntax(POSTGRES_CODEC)

    async def get_current_schema(self) -> str:
        result = await self.query("SELECT current_schema() AS schema_name")
        if not result.rows:
            return self.flags.default_schema
        return result.rows[0].get("schema_name") or self.flags.default_schema

    async def schemas(self) -> DatabaseSchemas:
        schema_rows = parse_catalog_rows(
            PgSchemaRow,
            (await self.query(
                "SELECT nspname AS schema_name FROM pg_catalog.pg_namespace "
                f"WHERE {_schema_filter('nspname')} ORDER BY nspname"
            )).rows,
            "pg_namespace",
        )
        table_rows = parse_catalog_rows(
            PgTableRow,
            (await self.query(
                "SELECT table_schema, table_name, table_type FROM information_schema.tables "
                f"WHERE {_schema_filter('table_schema')} ORDER BY table_schema, table_name"
            )).rows,
            "information_schema.tables",
        )
        column_rows = parse_catalog_rows(
            PgColumnRow,
            (await self.query(_COLUMN_QUERY.format(where=_schema_filter("n.nspname")))).rows,
            "pg_attribute",
        )
        pk_rows = parse_catalog_rows(
            PgConstraintRow,
            (await self.query(_CONSTRAINT_QUERY.format(
                where=f"con.contype = 'p' AND {_schema_filter('n.nspname')}"
            ))).rows,
            "pg_constraint",
        )

        fold = SchemaFold()
        for row in schema_rows:
            fold.add_schema(row.schema_name)
        for row in table_rows:
            item_type = SchemaItemType.VIEW if row.table_type.upper() == "VIEW" else SchemaItemType.TABLE
            fold.add_table(row.table_schema, row.table_name, item_type)
        for row in column_rows:
            fold.add_column(row.table_schema, row.table_name, _column_from_row(row))

        by_table: Dict[tuple, List[PgConstraintRow]] = {}
        for row in pk_rows:
            by_table.setdefault((row.table_schema, row.table_name), []).append(row)
        for table in fold.tables():
            _apply_constraints(table, by_table.get((table.schema_name, table.table_name), []))

        return fold.result()

    async def table_schema(self, schema_name: str, table_name: str) -> DatabaseTableSchema:
        where = (
            f"n.nspname = {self.escape_value(schema_name)} "
            f"AND c.relname = {self.escape_value(table_name)}"
        )
        column_rows = parse_catalog_rows(
            PgColumnRow,
            (await self.query(_COLUMN_QUERY.format(where=where))).rows,
            "pg_attribute",
        )
        if not column_rows:
            raise IncompleteMetadataError(
                f"Table {schema_name}.{table_name} has no columns in the catalog",
                source="pg_attribute",
            )
        constraint_rows = parse_catalog_rows(
            PgConstraintRow,
            (await self.query(_CONSTRAINT_QUERY.format(
                where=f"con.contype IN ('p', 'u', 'f', 'c') AND {where}"
            ))).rows,
            "pg_constraint",
        )

        table = DatabaseTableSchema(
            schema_name=schema_name,
            table_name=table_name,
            columns=[_column_from_row(row) for row in column_rows],
        )
        _apply_constraints(table, constraint_rows)
        return table

    async def trigger(self, schema_name: str, name: str) -> DatabaseTriggerSchema:
        raise UnsupportedOperationError(
            f"trigger {schema_name}.{name}", "trigger introspection is not available for PostgreSQL"
        )
