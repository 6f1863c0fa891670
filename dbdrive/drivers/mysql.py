"""MySQL-family driver (MySQL, MariaDB, Dolt)."""
import logging
import re
from typing import Any, Dict, List, Optional

from dbdrive.core.diff import AlterSyntax
from dbdrive.core.errors import IncompleteMetadataError, UnsupportedOperationError
from dbdrive.core.escape import MYSQL_CODEC
from dbdrive.core.introspect import CatalogRow, SchemaFold, parse_catalog_rows
from dbdrive.core.statements import column_definition, column_list
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

SYSTEM_SCHEMAS = ("mysql", "information_schema", "performance_schema", "sys")
_EXCLUDE = ", ".join(MYSQL_CODEC.escape_value(name) for name in SYSTEM_SCHEMAS)

_KEYWORD_DEFAULT = re.compile(
    r"^(?:(?:CURRENT_TIMESTAMP|CURRENT_DATE|CURRENT_TIME|LOCALTIMESTAMP|LOCALTIME)(?:\(\d*\))?|NOW\(\d*\))$",
    re.IGNORECASE
)
_ON_UPDATE = re.compile(r"\bon update (\w+(?:\(\d*\))?)", re.IGNORECASE)


class MySqlSchemaRow(CatalogRow):
    schema_name: str


class MySqlTableRow(CatalogRow):
    table_schema: str
    table_name: str
    table_type: str = "BASE TABLE"


class MySqlColumnRow(CatalogRow):
    table_schema: str
    table_name: str
    column_name: str
    column_type: str
    extra: Optional[str] = ""
    column_key: Optional[str] = ""
    is_nullable: Optional[str] = "YES"
    column_default: Optional[Any] = None
    generation_expression: Optional[str] = None


class MySqlForeignKeyRow(CatalogRow):
    constraint_name: str
    column_name: str
    referenced_table_schema: Optional[str] = None
    referenced_table_name: str
    referenced_column_name: str


class MySqlTriggerRow(CatalogRow):
    trigger_schema: str
    trigger_name: str
    event_object_table: str
    event_manipulation: str = ""
    action_timing: Optional[str] = None
    action_statement: Optional[str] = ""


def _column_from_row(row: MySqlColumnRow) -> DatabaseTableColumn:
    extra = (row.extra or "").lower()
    constraint = DatabaseColumnConstraint(
        not_null=(row.is_nullable or "").upper() == "NO",
        unique=(row.column_key or "").upper() == "UNI",
        auto_increment="auto_increment" in extra,
    )
    if "generated" in extra and row.generation_expression and "default_generated" not in extra:
        constraint.generated_expression = row.generation_expression
        constraint.generated_type = "STORED" if "stored" in extra else "VIRTUAL"
    elif row.column_default is not None:
        # MySQL 5.7 and MariaDB report CURRENT_TIMESTAMP without DEFAULT_GENERATED
        if "default_generated" in extra or _KEYWORD_DEFAULT.match(str(row.column_default)):
            constraint.default_expression = str(row.column_default)
        else:
            constraint.default_value = row.column_default

    on_update = _ON_UPDATE.search(row.extra or "")
    if on_update:
        constraint.on_update_expression = on_update.group(1)
    return DatabaseTableColumn(name=row.column_name, type=row.column_type, constraint=constraint)


def _apply_primary_key(table: DatabaseTableSchema, rows: List[MySqlColumnRow]) -> None:
    table.pk = [row.column_name for row in rows if (row.column_key or "").upper() == "PRI"]
    table.auto_increment = any("auto_increment" in (row.extra or "").lower() for row in rows)
    if table.pk:
        table.constraints.append(DatabaseTableConstraint(
            name="PRIMARY", primary_key=True, primary_columns=list(table.pk)
        ))


class MySqlAlterSyntax(AlterSyntax):
    """``ALTER TABLE`` grammar for MySQL-family servers."""

    def change_column(self, table_ref, old, new):
        definition = column_definition(self.codec, new, include_key_constraints=False)
        return [f"ALTER TABLE {table_ref} CHANGE {self.codec.escape_id(old.name)} {definition}"]

    def add_constraint(self, table_ref, constraint):
        if constraint.primary_key:
            # MySQL names every primary key PRIMARY
            columns = column_list(self.codec, constraint.primary_columns)
            return f"ALTER TABLE {table_ref} ADD PRIMARY KEY ({columns})"
        return super().add_constraint(table_ref, constraint)

    def drop_constraint(self, table_ref, constraint):
        if constraint.primary_key:
            return f"ALTER TABLE {table_ref} DROP PRIMARY KEY"
        if not constraint.name:
            raise UnsupportedOperationError(
                f"drop {constraint.kind} constraint", "the constraint has no name"
            )
        name = self.codec.escape_id(constraint.name)
        if constraint.foreign_key is not None:
            return f"ALTER TABLE {table_ref} DROP FOREIGN KEY {name}"
        if constraint.unique:
            return f"ALTER TABLE {table_ref} DROP INDEX {name}"
        return f"ALTER TABLE {table_ref} DROP CHECK {name}"

    def rename_table(self, schema_name, old_name, new_name):
        return (
            f"ALTER TABLE {self.codec.qualify(schema_name, old_name)} "
            f"RENAME TO {self.codec.qualify(schema_name, new_name)}"
        )


def _length(default: str, maximum: int, required: bool = True) -> ColumnTypeParameter:
    return ColumnTypeParameter(
        name="length", default=default, minimum=1, maximum=maximum, required=required
    )


MYSQL_TYPE_SELECTOR = ColumnTypeSelector(
    type="text",
    type_suggestions=[
        ColumnTypeGroup(name="String", suggestions=[
            ColumnTypeSuggestion(
                name="char", parameters=[_length("1", 255, required=False)],
                description="Fixed-length string"
            ),
            ColumnTypeSuggestion(
                name="varchar", parameters=[_length("255", 65535)],
                description="Variable-length string"
            ),
            ColumnTypeSuggestion(name="text", description="Variable-length string"),
            ColumnTypeSuggestion(name="longtext", description="Variable-length string up to 4GB"),
        ]),
        ColumnTypeGroup(name="Number", suggestions=[
            ColumnTypeSuggestion(name="tinyint", description="1 byte integer"),
            ColumnTypeSuggestion(name="smallint", description="2 byte integer"),
            ColumnTypeSuggestion(name="mediumint", description="3 byte integer"),
            ColumnTypeSuggestion(name="int", description="4 byte integer"),
            ColumnTypeSuggestion(name="bigint", description="8 byte integer"),
            ColumnTypeSuggestion(name="float", description="4 byte float"),
            ColumnTypeSuggestion(name="double", description="8 byte float"),
            ColumnTypeSuggestion(
                name="decimal",
                parameters=[
                    ColumnTypeParameter(
                        name="precision", description="Total number of digits",
                        default="10", minimum=1, maximum=65
                    ),
                    ColumnTypeParameter(
                        name="scale", description="Number of digits after the decimal point",
                        default="2", minimum=0, maximum=30, required=False
                    ),
                ],
                description=fixed_point_preview,
                rule=scale_within_precision,
            ),
        ]),
        ColumnTypeGroup(name="Date and Time", suggestions=[
            ColumnTypeSuggestion(name="date", description="Calendar date"),
            ColumnTypeSuggestion(name="time", description="Time of day"),
            ColumnTypeSuggestion(name="datetime", description="Date and time"),
            ColumnTypeSuggestion(name="timestamp", description="UTC timestamp"),
            ColumnTypeSuggestion(name="year", description="4-digit year"),
        ]),
        ColumnTypeGroup(name="Binary", suggestions=[
            ColumnTypeSuggestion(
                name="binary", parameters=[_length("1", 255, required=False)],
                description="Fixed-length binary string"
            ),
            ColumnTypeSuggestion(
                name="varbinary", parameters=[_length("255", 65535)],
                description="Variable-length binary string"
            ),
            ColumnTypeSuggestion(name="blob", description="Binary large object"),
        ]),
        ColumnTypeGroup(name="Other", suggestions=[
            ColumnTypeSuggestion(name="json", description="JSON document"),
        ]),
    ],
)


class MySQLDriver(Driver):
    """Driver for MySQL-compatible servers."""

    FLAGS = DriverFlags(
        dialect=SqlDialect.MYSQL,
        default_schema="",
        optional_schema=False,
        support_big_int=False,
        support_modify_column=True,
        support_create_update_table=True,
        mismatch_detection=False,
        support_use_statement=True,
        support_row_id=False,
        support_insert_returning=False,
        support_update_returning=False,
    )
    codec = MYSQL_CODEC
    column_type_selector = MYSQL_TYPE_SELECTOR
    alter_syntax = MySqlAlterSyntax(MYSQL_CODEC)

    async def get_current_schema(self) -> str:
        result = await self.query("SELECT DATABASE() AS db")
        if not result.rows:
            return self.flags.default_schema
        return result.rows[0].get("db") or self.flags.default_schema

    async def schemas(self) -> DatabaseSchemas:
        schema_rows = parse_catalog_rows(
            MySqlSchemaRow,
            (await self.query(
                "SELECT SCHEMA_NAME FROM information_schema.SCHEMATA "
                f"WHERE SCHEMA_NAME NOT IN ({_EXCLUDE}) ORDER BY SCHEMA_NAME"
            )).rows,
            "information_schema.SCHEMATA",
        )
        table_rows = parse_catalog_rows(
            MySqlTableRow,
            (await self.query(
                "SELECT TABLE_SCHEMA, TABLE_NAME, TABLE_TYPE FROM information_schema.tables "
                f"WHERE TABLE_SCHEMA NOT IN ({_EXCLUDE}) ORDER BY TABLE_SCHEMA, TABLE_NAME"
            )).rows,
            "information_schema.tables",
        )
        column_rows = parse_catalog_rows(
            MySqlColumnRow,
            (await self.query(
                "SELECT TABLE_SCHEMA, TABLE_NAME, COLUMN_NAME, COLUMN_TYPE, EXTRA, COLUMN_KEY, "
                "IS_NULLABLE, COLUMN_DEFAULT, GENERATION_EXPRESSION FROM information_schema.columns "
                f"WHERE TABLE_SCHEMA NOT IN ({_EXCLUDE}) "
                "ORDER BY TABLE_SCHEMA, TABLE_NAME, ORDINAL_POSITION"
            )).rows,
            "information_schema.columns",
        )
        trigger_rows = parse_catalog_rows(
            MySqlTriggerRow,
            (await self.query(
                "SELECT TRIGGER_SCHEMA, TRIGGER_NAME, EVENT_OBJECT_TABLE FROM information_schema.TRIGGERS "
                f"WHERE TRIGGER_SCHEMA NOT IN ({_EXCLUDE}) ORDER BY TRIGGER_SCHEMA, TRIGGER_NAME"
            )).rows,
            "information_schema.TRIGGERS",
        )

        fold = SchemaFold()
        for row in schema_rows:
            fold.add_schema(row.schema_name)
        for row in table_rows:
            item_type = SchemaItemType.VIEW if row.table_type.upper() == "VIEW" else SchemaItemType.TABLE
            fold.add_table(row.table_schema, row.table_name, item_type)

        by_table: Dict[tuple, List[MySqlColumnRow]] = {}
        for row in column_rows:
            if fold.add_column(row.table_schema, row.table_name, _column_from_row(row)):
                by_table.setdefault((row.table_schema, row.table_name), []).append(row)
        for (schema_name, table_name), rows in by_table.items():
            _apply_primary_key(fold.table(schema_name, table_name), rows)

        for row in trigger_rows:
            fold.add_trigger(row.trigger_schema, row.trigger_name, row.event_object_table)

        return fold.result()

    async def table_schema(self, schema_name: str, table_name: str) -> DatabaseTableSchema:
        schema_literal = self.escape_value(schema_name)
        table_literal = self.escape_value(table_name)
        column_rows = parse_catalog_rows(
            MySqlColumnRow,
            (await self.query(
                "SELECT TABLE_SCHEMA, TABLE_NAME, COLUMN_NAME, COLUMN_TYPE, EXTRA, COLUMN_KEY, "
                "IS_NULLABLE, COLUMN_DEFAULT, GENERATION_EXPRESSION FROM information_schema.columns "
                f"WHERE TABLE_SCHEMA={schema_literal} AND TABLE_NAME={table_literal} "
                "ORDER BY ORDINAL_POSITION"
            )).rows,
            "information_schema.columns",
        )
        if not column_rows:
            raise IncompleteMetadataError(
                f"Table {schema_name}.{table_name} has no columns in the catalog",
                source="information_schema.columns",
            )

        table = DatabaseTableSchema(
            schema_name=schema_name,
            table_name=table_name,
            columns=[_column_from_row(row) for row in column_rows],
        )
        _apply_primary_key(table, column_rows)

        fk_rows = parse_catalog_rows(
            MySqlForeignKeyRow,
            (await self.query(
                "SELECT CONSTRAINT_NAME, COLUMN_NAME, REFERENCED_TABLE_SCHEMA, REFERENCED_TABLE_NAME, "
                "REFERENCED_COLUMN_NAME FROM information_schema.KEY_COLUMN_USAGE "
                f"WHERE TABLE_SCHEMA={schema_literal} AND TABLE_NAME={table_literal} "
                "AND REFERENCED_TABLE_NAME IS NOT NULL ORDER BY CONSTRAINT_NAME, ORDINAL_POSITION"
            )).rows,
            "information_schema.KEY_COLUMN_USAGE",
        )
        foreign_keys: Dict[str, DatabaseForeignKeyReference] = {}
        for row in fk_rows:
            reference = foreign_keys.get(row.constraint_name)
            if reference is None:
                reference = DatabaseForeignKeyReference(
                    foreign_schema_name=row.referenced_table_schema,
                    foreign_table_name=row.referenced_table_name,
                )
                foreign_keys[row.constraint_name] = reference
            reference.columns.append(row.column_name)
            reference.foreign_columns.append(row.referenced_column_name)
        for name, reference in foreign_keys.items():
            table.constraints.append(DatabaseTableConstraint(name=name, foreign_key=reference))

        return table

    async def trigger(self, schema_name: str, name: str) -> DatabaseTriggerSchema:
        rows = parse_catalog_rows(
            MySqlTriggerRow,
            (await self.query(
                "SELECT TRIGGER_SCHEMA, TRIGGER_NAME, EVENT_OBJECT_TABLE, EVENT_MANIPULATION, "
                "ACTION_TIMING, ACTION_STATEMENT FROM information_schema.TRIGGERS "
                f"WHERE TRIGGER_SCHEMA={self.escape_value(schema_name)} "
                f"AND TRIGGER_NAME={self.escape_value(name)}"
            )).rows,
            "information_schema.TRIGGERS",
        )
        if not rows:
            raise IncompleteMetadataError(
                f"Trigger {schema_name}.{name} not found", source="information_schema.TRIGGERS"
            )
        row = rows[0]
        return DatabaseTriggerSchema(
            name=row.trigger_name,
            schema_name=row.trigger_schema,
            table_name=row.event_object_table,
            when=row.action_timing,
            operation=row.event_manipulation,
            statement=row.action_statement or "",
        )
