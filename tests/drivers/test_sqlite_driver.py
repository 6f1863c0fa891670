"""Tests for the SQLite driver against a real database file."""
import pytest

from dbdrive.core.errors import IncompleteMetadataError
from dbdrive.drivers.sqlite import SQLiteDriver
from dbdrive.models.operation import (
    DatabaseTableOperation,
    OperationType,
    SelectFromTableOptions,
)
from dbdrive.models.schema import DatabaseForeignKeyReference, DatabaseTableConstraint, SchemaItemType

SETUP = [
    "CREATE TABLE teams (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL UNIQUE)",
    "CREATE TABLE members ("
    " team_id INTEGER REFERENCES teams(id),"
    " user_id INTEGER,"
    " role TEXT DEFAULT 'member' CHECK (role <> ''),"
    " PRIMARY KEY (team_id, user_id))",
    "CREATE VIEW team_names AS SELECT name FROM teams",
    "CREATE TRIGGER teams_audit AFTER INSERT ON teams BEGIN SELECT 1; END",
]


async def _driver(connection):
    driver = SQLiteDriver(connection)
    await driver.transaction(SETUP)
    return driver


@pytest.mark.asyncio
async def test_schemas_lists_every_object(sqlite_connection):
    driver = await _driver(sqlite_connection)

    schemas = await driver.schemas()

    assert list(schemas) == ["main"]
    assert [(item.type, item.name) for item in schemas["main"]] == [
        (SchemaItemType.TABLE, "members"),
        (SchemaItemType.VIEW, "team_names"),
        (SchemaItemType.TABLE, "teams"),
        (SchemaItemType.TRIGGER, "teams_audit"),
    ]
    view = schemas["main"][1].table_schema
    assert [c.name for c in view.columns] == ["name"]
    assert schemas["main"][3].table_name == "teams"


@pytest.mark.asyncio
async def test_schemas_is_repeatable(sqlite_connection):
    """Reading the catalog twice yields the same description."""
    driver = await _driver(sqlite_connection)

    first = await driver.schemas()
    second = await driver.schemas()

    assert first == second
    assert first["main"][0].table_schema.pk == ["team_id", "user_id"]


@pytest.mark.asyncio
async def test_single_column_key_with_autoincrement(sqlite_connection):
    driver = await _driver(sqlite_connection)

    teams = await driver.table_schema("main", "teams")

    assert teams.pk == ["id"]
    assert teams.auto_increment
    assert teams.constraints == []
    id_constraint = teams.get_column("id").constraint
    assert id_constraint.primary_key and id_constraint.auto_increment
    name = teams.get_column("name").constraint
    assert name.not_null and name.unique
    assert teams.create_script.startswith("CREATE TABLE teams")


@pytest.mark.asyncio
async def test_composite_key_and_inline_constraints(sqlite_connection):
    driver = await _driver(sqlite_connection)

    members = await driver.table_schema("main", "members")

    assert [c.name for c in members.columns] == ["team_id", "user_id", "role"]
    assert [c.type for c in members.columns] == ["INTEGER", "INTEGER", "TEXT"]
    assert members.pk == ["team_id", "user_id"]
    assert members.constraints[0].primary_key
    assert members.constraints[0].primary_columns == ["team_id", "user_id"]
    assert not members.get_column("team_id").constraint.primary_key
    assert members.get_column("team_id").constraint.foreign_key.foreign_table_name == "teams"
    role = members.get_column("role").constraint
    assert role.default_value == "member"
    assert role.check_expression == "role <> ''"


@pytest.mark.asyncio
async def test_missing_table_raises(sqlite_connection):
    driver = SQLiteDriver(sqlite_connection)
    with pytest.raises(IncompleteMetadataError, match="not found"):
        await driver.table_schema("main", "nope")


@pytest.mark.asyncio
async def test_trigger(sqlite_connection):
    driver = await _driver(sqlite_connection)

    trigger = await driver.trigger("main", "teams_audit")

    assert trigger.table_name == "teams"
    assert trigger.when == "AFTER"
    assert trigger.operation == "INSERT"
    assert trigger.statement == "SELECT 1;"


@pytest.mark.asyncio
async def test_row_editing_returns_stored_rows(sqlite_connection):
    driver = await _driver(sqlite_connection)

    responses = await driver.update_table_data("main", "teams", [
        DatabaseTableOperation(operation=OperationType.INSERT, values={"name": "core"}),
        DatabaseTableOperation(operation=OperationType.INSERT, values={"name": "docs"}),
    ])
    assert [r.record for r in responses] == [{"id": 1, "name": "core"}, {"id": 2, "name": "docs"}]

    responses = await driver.update_table_data("main", "teams", [
        DatabaseTableOperation(operation=OperationType.UPDATE, values={"name": "infra"}, where={"id": 1}),
        DatabaseTableOperation(operation=OperationType.DELETE, where={"id": 2}),
    ])
    assert responses[0].record == {"id": 1, "name": "infra"}
    assert responses[1].record is None

    page = await driver.select_table("main", "teams", SelectFromTableOptions(limit=10))
    assert page.data.rows == [{"id": 1, "name": "infra"}]
    assert page.table_schema.pk == ["id"]


@pytest.mark.asyncio
async def test_rows_are_read_back_without_returning(sqlite_connection):
    driver = SQLiteDriver(
        sqlite_connection,
        flag_overrides={"support_insert_returning": False, "support_update_returning": False},
    )
    await driver.transaction(SETUP)
    teams = await driver.table_schema("main", "teams")

    inserted = await driver.update_table_data(
        "main", "teams",
        [DatabaseTableOperation(operation=OperationType.INSERT, values={"name": "core"})],
        table=teams,
    )
    assert inserted[0].last_id == 1
    assert inserted[0].record == {"id": 1, "name": "core"}

    updated = await driver.update_table_data("main", "teams", [
        DatabaseTableOperation(operation=OperationType.UPDATE, values={"name": "infra"}, where={"id": 1}),
    ])
    assert updated[0].record == {"id": 1, "name": "infra"}


@pytest.mark.asyncio
async def test_rowid_is_selected_for_tables_without_key(sqlite_connection):
    driver = SQLiteDriver(sqlite_connection)
    await driver.transaction(["CREATE TABLE notes (body TEXT)", "INSERT INTO notes VALUES ('hi')"])

    page = await driver.select_table("main", "notes")

    assert page.data.rows == [{"rowid": 1, "body": "hi"}]


@pytest.mark.asyncio
async def test_empty_and_drop_table(sqlite_connection):
    driver = await _driver(sqlite_connection)
    await driver.query("INSERT INTO teams (name) VALUES ('core')")

    await driver.empty_table("main", "teams")
    assert (await driver.query("SELECT COUNT(*) AS n FROM teams")).rows == [{"n": 0}]

    await driver.drop_table("main", "members")
    names = [item.name for item in (await driver.schemas())["main"]]
    assert "members" not in names


@pytest.mark.asyncio
async def test_columns_from_script_when_pragma_functions_are_blocked(scripted_connection):
    connection = scripted_connection({
        "sqlite_master": [{
            "type": "table", "name": "kv", "tbl_name": "kv",
            "sql": "CREATE TABLE kv (k VARCHAR(50) PRIMARY KEY, v DECIMAL(10,2)) WITHOUT ROWID",
        }],
    })
    driver = SQLiteDriver(connection, support_pragma_list=False)

    table = await driver.table_schema("main", "kv")

    assert [(c.name, c.type) for c in table.columns] == [("k", "VARCHAR(50)"), ("v", "DECIMAL(10,2)")]
    assert table.pk == ["k"]
    assert table.without_row_id
    assert not any("pragma_table_info" in s for s in connection.statements)


@pytest.mark.asyncio
async def test_unparseable_script_falls_back_to_pragma_foreign_keys(scripted_connection):
    connection = scripted_connection({
        "pragma_foreign_key_list": [
            {"id": 0, "seq": 0, "foreign_table": "teams", "from_column": "team_id", "to_column": "id"},
        ],
        "pragma_table_info": [
            {"cid": 0, "name": "team_id", "type": "INTEGER", "notnull": 1, "dflt_value": None, "pk": 0},
            {"cid": 1, "name": "note", "type": "TEXT", "notnull": 0, "dflt_value": "'x'", "pk": 0},
        ],
        "sqlite_master": [{
            "type": "table", "name": "odd", "tbl_name": "odd", "sql": "CREATE TABLE odd (team_id INTEGER,",
        }],
    })

    table = await SQLiteDriver(connection).table_schema("main", "odd")

    assert [c.name for c in table.columns] == ["team_id", "note"]
    assert table.get_column("team_id").constraint.not_null
    assert table.get_column("note").constraint.default_expression == "'x'"
    assert table.constraints == [DatabaseTableConstraint(foreign_key=DatabaseForeignKeyReference(
        columns=["team_id"], foreign_table_name="teams", foreign_columns=["id"]
    ))]
