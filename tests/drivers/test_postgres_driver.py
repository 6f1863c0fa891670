"""Tests for PostgreSQL catalog introspection."""
# pylint: disable=redefined-outer-name
import pytest

from dbdrive.core.errors import IncompleteMetadataError, UnsupportedOperationError
from dbdrive.drivers.postgres import PgConstraintRow, PostgresDriver
from dbdrive.models.schema import SchemaItemType


def _column(name, data_type, **extra):
    row = {
        "table_schema": "public", "table_name": "users", "column_name": name, "data_type": data_type,
        "not_null": False, "column_default": None, "identity": "", "generated": "",
    }
    row.update(extra)
    return row


COLUMNS = [
    _column("id", "integer", not_null=True, column_default="nextval('users_id_seq'::regclass)"),
    _column("email", "text"),
    _column("created_at", "timestamp without time zone", column_default="now()"),
    _column("qty", "integer", identity=None, generated=None),
    _column("total", "integer", column_default="(qty * 2)", generated="s"),
    _column("team_id", "bigint", identity="d"),
]

PRIMARY_KEY = {
    "table_schema": "public", "table_name": "users", "constraint_name": "users_pkey",
    "constraint_type": "p", "columns": "{id}",
}

CONSTRAINTS = [
    PRIMARY_KEY,
    {
        "table_schema": "public", "table_name": "users", "constraint_name": "users_email_key",
        "constraint_type": "u", "columns": ["email"],
    },
    {
        "table_schema": "public", "table_name": "users", "constraint_name": "users_team_fk",
        "constraint_type": "f", "columns": "{team_id}", "foreign_schema_name": "public",
        "foreign_table_name": "teams", "foreign_columns": "{id}",
    },
    {
        "table_schema": "public", "table_name": "users", "constraint_name": "users_qty_check",
        "constraint_type": "c", "definition": "CHECK ((qty > 0)) NOT VALID",
    },
    {
        "table_schema": "public", "table_name": "users", "constraint_name": "users_excl",
        "constraint_type": "x",
    },
]


@pytest.fixture
def catalog(scripted_connection):
    return scripted_connection({
        "FROM pg_catalog.pg_namespace": [{"schema_name": "public"}, {"schema_name": "audit"}],
        "FROM information_schema.tables": [
            {"table_schema": "public", "table_name": "users", "table_type": "BASE TABLE"},
            {"table_schema": "public", "table_name": "recent_users", "table_type": "VIEW"},
        ],
        "FROM pg_catalog.pg_attribute a": COLUMNS,
        "FROM pg_catalog.pg_constraint": CONSTRAINTS,
        "current_schema()": [{"schema_name": "app"}],
    })


@pytest.mark.asyncio
async def test_schemas(scripted_connection):
    connection = scripted_connection({
        "FROM pg_catalog.pg_namespace": [{"schema_name": "public"}, {"schema_name": "audit"}],
        "FROM information_schema.tables": [
            {"table_schema": "public", "table_name": "users", "table_type": "BASE TABLE"},
            {"table_schema": "public", "table_name": "recent_users", "table_type": "VIEW"},
        ],
        "FROM pg_catalog.pg_attribute a": COLUMNS,
        "FROM pg_catalog.pg_constraint": [PRIMARY_KEY],
    })

    schemas = await PostgresDriver(connection).schemas()

    assert list(schemas) == ["public", "audit"]
    assert [(i.type, i.name) for i in schemas["public"]] == [
        (SchemaItemType.TABLE, "users"),
        (SchemaItemType.VIEW, "recent_users"),
    ]
    users = schemas["public"][0].table_schema
    assert users.pk == ["id"]
    assert users.auto_increment
    assert len(users.columns) == 6
    assert schemas["public"][1].table_schema.columns == []
    assert all("!~ '^pg_(toast_)?temp_'" in s for s in connection.statements)


@pytest.mark.asyncio
async def test_table_schema_columns(catalog):
    table = await PostgresDriver(catalog).table_schema("public", "users")

    assert "n.nspname = 'public' AND c.relname = 'users'" in catalog.statements[0]
    id_constraint = table.get_column("id").constraint
    assert id_constraint.not_null
    assert id_constraint.auto_increment
    assert id_constraint.default_expression is None
    assert table.get_column("created_at").constraint.default_expression == "now()"
    total = table.get_column("total").constraint
    assert total.generated_expression == "(qty * 2)"
    assert total.generated_type == "STORED"
    assert table.get_column("team_id").constraint.auto_increment


@pytest.mark.asyncio
async def test_table_schema_constraints(catalog):
    table = await PostgresDriver(catalog).table_schema("public", "users")

    assert [c.name for c in table.constraints] == [
        "users_pkey", "users_email_key", "users_team_fk", "users_qty_check"
    ]
    assert table.pk == ["id"]
    assert table.constraints[1].unique_columns == ["email"]
    foreign_key = table.constraints[2].foreign_key
    assert foreign_key.columns == ["team_id"]
    assert foreign_key.foreign_table_name == "teams"
    assert foreign_key.foreign_columns == ["id"]
    assert table.constraints[3].check_expression == "((qty > 0))"


@pytest.mark.asyncio
async def test_missing_table_raises(scripted_connection):
    with pytest.raises(IncompleteMetadataError):
        await PostgresDriver(scripted_connection()).table_schema("public", "nope")


@pytest.mark.asyncio
async def test_trigger_introspection_is_unsupported(catalog):
    with pytest.raises(UnsupportedOperationError, match="not available for PostgreSQL"):
        await PostgresDriver(catalog).trigger("public", "audit")
    assert catalog.statements == []


@pytest.mark.asyncio
async def test_current_schema(catalog, scripted_connection):
    assert await PostgresDriver(catalog).get_current_schema() == "app"
    assert await PostgresDriver(scripted_connection()).get_current_schema() == "public"


def test_array_columns_accept_text_form():
    row = PgConstraintRow.model_validate({
        "table_schema": "s", "table_name": "t", "constraint_name": "k", "constraint_type": "u",
        "columns": '{"first name",id}', "foreign_columns": None,
    })
    assert row.columns == ["first name", "id"]
    assert row.foreign_columns == []


def test_flags_and_literals():
    driver = PostgresDriver(None)
    assert driver.get_flags().default_schema == "public"
    assert driver.get_flags().support_insert_returning
    assert driver.escape_value(b"\xde\xad") == "'\\xDEAD'::bytea"
    assert driver.escape_id('we"ird') == '"we""ird"'
