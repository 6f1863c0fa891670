"""Tests for row editing and DDL planning through the driver base."""
import pytest

from dbdrive.core.diff import SchemaChangeWarning
from dbdrive.core.errors import TransportError
from dbdrive.drivers.mysql import MySQLDriver
from dbdrive.drivers.postgres import PostgresDriver
from dbdrive.models.change import DatabaseTableColumnChange, DatabaseTableSchemaChange
from dbdrive.models.operation import DatabaseTableOperation, OperationType


@pytest.mark.asyncio
async def test_mysql_insert_reads_row_back_by_key(scripted_connection, table_factory, column_factory):
    connection = scripted_connection({"WHERE `id` = 5": [{"id": 5, "name": "Ada"}]})
    driver = MySQLDriver(connection)
    table = table_factory(schema_name="shop", columns=[column_factory(primary_key=True)], pk=["id"])

    responses = await driver.update_table_data(
        "shop", "users",
        [DatabaseTableOperation(operation=OperationType.INSERT, values={"id": 5, "name": "Ada"})],
        table=table,
    )

    assert connection.transactions == [["INSERT INTO `shop`.`users`(`id`, `name`) VALUES(5, 'Ada')"]]
    assert connection.statements == ["SELECT * FROM `shop`.`users` WHERE `id` = 5 LIMIT 1"]
    assert responses[0].record == {"id": 5, "name": "Ada"}


@pytest.mark.asyncio
async def test_insert_without_known_key_skips_read_back(scripted_connection):
    connection = scripted_connection()

    responses = await MySQLDriver(connection).update_table_data(
        "shop", "users", [DatabaseTableOperation(operation=OperationType.INSERT, values={"name": "Ada"})]
    )

    assert connection.statements == []
    assert responses[0].record is None


@pytest.mark.asyncio
async def test_update_follows_a_changed_key(scripted_connection):
    connection = scripted_connection({"WHERE `id` = 6": [{"id": 6}]})

    responses = await MySQLDriver(connection).update_table_data("shop", "users", [
        DatabaseTableOperation(operation=OperationType.UPDATE, values={"id": 6}, where={"id": 5}),
    ])

    assert connection.transactions[0] == ["UPDATE `shop`.`users` SET `id` = 6 WHERE `id` = 5"]
    assert responses[0].record == {"id": 6}


@pytest.mark.asyncio
async def test_postgres_uses_returning(scripted_connection):
    connection = scripted_connection({"RETURNING *": [{"id": 1, "name": "Ada"}]})

    responses = await PostgresDriver(connection).update_table_data("public", "users", [
        DatabaseTableOperation(operation=OperationType.INSERT, values={"name": "Ada"}),
    ])

    assert responses[0].record == {"id": 1, "name": "Ada"}
    assert connection.statements == []


@pytest.mark.asyncio
async def test_malformed_edit_fails_before_anything_is_sent(scripted_connection):
    connection = scripted_connection()

    with pytest.raises(ValueError):
        await MySQLDriver(connection).update_table_data("shop", "users", [
            DatabaseTableOperation(operation=OperationType.INSERT, values={"name": "Ada"}),
            DatabaseTableOperation(operation=OperationType.UPDATE, values={"name": "x"}),
        ])
    assert connection.transactions == []


@pytest.mark.asyncio
async def test_transport_errors_surface_unchanged(scripted_connection):
    connection = scripted_connection(fail_on="DROP TABLE")

    with pytest.raises(TransportError, match="scripted failure"):
        await MySQLDriver(connection).drop_table("shop", "users")


def test_planning_warnings_become_python_warnings(table_factory, column_factory):
    change = DatabaseTableSchemaChange.from_table_schema(table_factory(schema_name="shop"))
    change.columns.append(DatabaseTableColumnChange(
        key="new:email", new=column_factory("email", "varchar(100)", not_null=True)
    ))

    with pytest.warns(SchemaChangeWarning, match="NOT NULL without a default"):
        statements = MySQLDriver(None).create_update_table_schema(change)

    assert statements == ["ALTER TABLE `shop`.`users` ADD COLUMN `email` varchar(100) NOT NULL"]
