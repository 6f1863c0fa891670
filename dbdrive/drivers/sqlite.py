"""SQLite-family driver (SQLite, libSQL/Turso, Cloudflare D1)."""
import logging
from typing import Any, Dict, List, Optional

from dbdrive.core.errors import IncompleteMetadataError
from dbdrive.core.escape import SQLITE_CODEC
from dbdrive.core.introspect import CatalogRow, SchemaFold, parse_catalog_rows, truthy
from dbdrive.core.type_selector import ColumnTypeGroup, ColumnTypeSelector, ColumnTypeSuggestion
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
from dbdrive.sql.ddl_parser import parse_create_table, parse_create_trigger

logger = logging.getLogger(__name__)

_USER_OBJECTS = "name NOT LIKE 'sqlite\\_%' ESCAPE '\\'"


class SqliteDatabaseRow(CatalogRow):
    name: str


class SqliteMasterRow(CatalogRow):
    type: str
    name: str
    tbl_name: str
    sql: Optional[str] = None


class SqliteColumnRow(CatalogRow):
    table_name: Optional[str] = None
    cid: int = 0
    name: str
    type: Optional[str] = ""
    notnull: Any = 0
    dflt_value: Optional[str] = None
    pk: int = 0


class SqliteForeignKeyRow(CatalogRow):
    id: int
    seq: int = 0
    foreign_table: str
    from_column: str
    to_column: Optional[str] = None


def _merge_table(
    table: DatabaseTableSchema,
    column_rows: List[SqliteColumnRow],
    parsed: Optional[DatabaseTableSchema]
) -> None:
    """Combine catalog columns with what the stored script adds.

    The catalog is authoritative for names, declared types, nullability and
    primary-key order; the script contributes everything the catalog cannot
    report (AUTOINCREMENT, UNIQUE, CHECK, COLLATE, generated columns).
    """
    parsed_columns = {c.name: c for c in parsed.columns} if parsed else {}
    pk_rows = sorted((row for row in column_rows if row.pk > 0), key=lambda row: row.pk)
    pk = [row.name for row in pk_rows]

    parsed_table_pk = None
    if parsed is not None:
        parsed_table_pk = next((c for c in parsed.constraints if c.primary_key), None)
    inline_pk = (
        len(pk) == 1 and parsed_table_pk is None
        and (parsed is None or _has_inline_pk(parsed_columns.get(pk[0])))
    )

    table.columns = []
    for row in sorted(column_rows, key=lambda row: row.cid):
        source = parsed_columns.get(row.name)
        if source is not None and source.constraint is not None:
            constraint = source.constraint.model_copy(deep=True)
        else:
            constraint = DatabaseColumnConstraint()
            if row.dflt_value is not None:
                constraint.default_expression = row.dflt_value
        constraint.not_null = truthy(row.notnull)
        constraint.primary_key = inline_pk and row.pk > 0
        if not constraint.primary_key:
            constraint.primary_key_order = None
        table.columns.append(DatabaseTableColumn(
            name=row.name, type=row.type or "", constraint=constraint
        ))

    table.pk = pk
    table.constraints = []
    if pk and not inline_pk:
        table.constraints.append(parsed_table_pk or DatabaseTableConstraint(
            primary_key=True, primary_columns=pk
        ))
    if parsed is not None:
        table.constraints.extend(c for c in parsed.constraints if not c.primary_key)
        table.auto_increment = parsed.auto_increment
        table.without_row_id = parsed.without_row_id


def _has_inline_pk(column: Optional[DatabaseTableColumn]) -> bool:
    return column is not None and column.constraint is not None and column.constraint.primary_key


SQLITE_TYPE_SELECTOR = ColumnTypeSelector(
    type="dropdown",
    type_suggestions=[
        ColumnTypeGroup(name="Storage class", suggestions=[
            ColumnTypeSuggestion(name="TEXT", description="UTF-8 or UTF-16 text"),
            ColumnTypeSuggestion(name="INTEGER", description="Signed integer up to 8 bytes"),
            ColumnTypeSuggestion(name="REAL", description="8 byte IEEE floating point"),
            ColumnTypeSuggestion(name="BLOB", description="Stored exactly as input"),
            ColumnTypeSuggestion(name="NUMERIC", description="Integer or real, whichever fits"),
        ]),
    ],
)


class SQLiteDriver(Driver):
    """Driver for SQLite-compatible databases.

    Args:
        connection: Object with async query/transaction
        flag_overrides: Replacement values for individual capability flags
        support_pragma_list: When False, columns come from the stored CREATE
            scripts only (for hosts that block table-valued pragma functions)
    """

    FLAGS = DriverFlags(
        dialect=SqlDialect.SQLITE,
        default_schema="main",
        optional_schema=True,
        support_big_int=True,
        support_modify_column=False,
        support_create_update_table=True,
        mismatch_detection=False,
        support_use_statement=False,
        support_row_id=True,
        support_insert_returning=True,
        support_update_returning=True,
    )
    codec = SQLITE_CODEC
    column_type_selector = SQLITE_TYPE_SELECTOR

    def __init__(
        self,
        connection: Any,
        flag_overrides: Optional[Dict[str, Any]] = None,
        support_pragma_list: bool = True
    ):
        super().__init__(connection, flag_overrides)
        self.support_pragma_list = support_pragma_list

    def _master(self, schema_name: str) -> str:
        return f"{self.escape_id(schema_name)}.sqlite_master"

    async def _master_rows(self, schema_name: str, where: str) -> List[SqliteMasterRow]:
        result = await self.query(
            f"SELECT type, name, tbl_name, sql FROM {self._master(schema_name)} "
            f"WHERE {where} AND {_USER_OBJECTS} ORDER BY name"
        )
        return parse_catalog_rows(SqliteMasterRow, result.rows, "sqlite_master")

    async def _column_rows(self, schema_name: str, table_name: Optional[str] = None) -> List[SqliteColumnRow]:
        schema_literal = self.escape_value(schema_name)
        if table_name is None:
            statement = (
                "SELECT m.name AS table_name, p.cid, p.name, p.type, p.\"notnull\", p.dflt_value, p.pk "
                f"FROM {self._master(schema_name)} AS m "
                f"JOIN pragma_table_info(m.name, {schema_literal}) AS p "
                f"WHERE m.type IN ('table', 'view') AND m.{_USER_OBJECTS} "
                "ORDER BY m.name, p.cid"
            )
        else:
            statement = (
                "SELECT cid, name, type, \"notnull\", dflt_value, pk "
                f"FROM pragma_table_info({self.escape_value(table_name)}, {schema_literal}) "
                "ORDER BY cid"
            )
        result = await self.query(statement)
        return parse_catalog_rows(SqliteColumnRow, result.rows, "pragma_table_info")

    def _build_table(
        self,
        table: DatabaseTableSchema,
        master: SqliteMasterRow,
        column_rows: List[SqliteColumnRow]
    ) -> Optional[DatabaseTableSchema]:
        parsed = None
        if master.type == "table" and master.sql:
            parsed = parse_create_table(master.sql, schema_name=table.schema_name)
            if parsed is None:
                logger.warning(
                    "Could not parse CREATE script of %s.%s, using catalog data only",
                    table.schema_name, table.table_name
                )
        table.create_script = master.sql

        if self.support_pragma_list:
            _merge_table(table, column_rows, parsed)
        elif parsed is not None:
            table.columns = parsed.columns
            table.constraints = parsed.constraints
            table.pk = parsed.pk
            table.auto_increment = parsed.auto_increment
            table.without_row_id = parsed.without_row_id
        return parsed

    async def schemas(self) -> DatabaseSchemas:
        database_rows = parse_catalog_rows(
            SqliteDatabaseRow,
            (await self.query("SELECT name FROM pragma_database_list ORDER BY seq")).rows,
            "pragma_database_list",
        )

        fold = SchemaFold()
        for database in database_rows:
            schema_name = database.name
            if schema_name == "temp":
                continue
            fold.add_schema(schema_name)

            master_rows = await self._master_rows(
                schema_name, "type IN ('table', 'view', 'trigger')"
            )
            column_rows: List[SqliteColumnRow] = []
            if self.support_pragma_list:
                column_rows = await self._column_rows(schema_name)

            by_table: Dict[str, List[SqliteColumnRow]] = {}
            for row in column_rows:
                by_table.setdefault(row.table_name, []).append(row)

            for master in master_rows:
                if master.type == "trigger":
                    fold.add_trigger(schema_name, master.name, master.tbl_name)
                    continue
                item_type = SchemaItemType.VIEW if master.type == "view" else SchemaItemType.TABLE
                table = fold.add_table(schema_name, master.name, item_type)
                self._build_table(table, master, by_table.pop(master.name, []))

            for table_name, rows in by_table.items():
                fold.dropped_columns += len(rows)
                logger.debug("Dropping %d column(s) of unlisted table %s", len(rows), table_name)

        return fold.result()

    async def table_schema(self, schema_name: str, table_name: str) -> DatabaseTableSchema:
        masters = await self._master_rows(
            schema_name,
            f"type IN ('table', 'view') AND name = {self.escape_value(table_name)}"
        )
        if not masters:
            raise IncompleteMetadataError(
                f"Table {schema_name}.{table_name} not found", source="sqlite_master"
            )

        table = DatabaseTableSchema(schema_name=schema_name, table_name=table_name)
        column_rows = await self._column_rows(schema_name, table_name) if self.support_pragma_list else []
        parsed = self._build_table(table, masters[0], column_rows)

        if parsed is None and self.support_pragma_list and masters[0].type == "table":
            await self._attach_foreign_keys(table)
        return table

    async def _attach_foreign_keys(self, table: DatabaseTableSchema) -> None:
        result = await self.query(
            "SELECT id, seq, \"table\" AS foreign_table, \"from\" AS from_column, \"to\" AS to_column "
            f"FROM pragma_foreign_key_list({self.escape_value(table.table_name)}, "
            f"{self.escape_value(table.schema_name)}) ORDER BY id, seq"
        )
        rows = parse_catalog_rows(SqliteForeignKeyRow, result.rows, "pragma_foreign_key_list")
        references: Dict[int, DatabaseForeignKeyReference] = {}
        for row in rows:
            reference = references.setdefault(
                row.id, DatabaseForeignKeyReference(foreign_table_name=row.foreign_table)
            )
            reference.columns.append(row.from_column)
            if row.to_column:
                reference.foreign_columns.append(row.to_column)
        for reference in references.values():
            table.constraints.append(DatabaseTableConstraint(foreign_key=reference))

    async def trigger(self, schema_name: str, name: str) -> DatabaseTriggerSchema:
        masters = await self._master_rows(
            schema_name, f"type = 'trigger' AND name = {self.escape_value(name)}"
        )
        if not masters or not masters[0].sql:
            raise IncompleteMetadataError(
                f"Trigger {schema_name}.{name} not found", source="sqlite_master"
            )
        return parse_create_trigger(masters[0].sql, schema_name)
