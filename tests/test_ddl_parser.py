"""Tests for DDL parser."""
import pytest

from dbdrive.core.errors import IncompleteMetadataError
from dbdrive.sql.ddl_parser import (
    parse_create_table,
    parse_create_trigger,
    split_qualified_name,
    unquote_identifier,
)

ORDERS_DDL = """
CREATE TABLE "orders" (
    "id" INTEGER PRIMARY KEY AUTOINCREMENT,
    "user_id" INTEGER NOT NULL REFERENCES users(id),
    "status" TEXT COLLATE NOCASE NOT NULL DEFAULT 'new',
    "qty" INTEGER CHECK (qty > 0),
    "code" TEXT UNIQUE,
    CONSTRAINT "orders_code_status" UNIQUE ("code", "status")
)
"""


def test_parse_create_table_columns():
    """Test parsing column names, types and inline constraints."""
    table = parse_create_table(ORDERS_DDL, schema_name="main")

    assert table.schema_name == "main"
    assert table.table_name == "orders"
    assert [c.name for c in table.columns] == ["id", "user_id", "status", "qty", "code"]
    assert table.columns[0].type == "INTEGER"
    assert table.columns[2].type == "TEXT"
    assert table.pk == ["id"]
    assert table.auto_increment
    assert table.create_script == ORDERS_DDL


def test_parse_inline_constraints():
    table = parse_create_table(ORDERS_DDL)

    id_constraint = table.get_column("id").constraint
    assert id_constraint.primary_key
    assert id_constraint.auto_increment

    user_fk = table.get_column("user_id").constraint.foreign_key
    assert user_fk.foreign_table_name == "users"
    assert user_fk.foreign_columns == ["id"]
    assert user_fk.columns == ["user_id"]

    status = table.get_column("status").constraint
    assert status.not_null
    assert status.default_value == "new"
    assert status.collate == "NOCASE"

    assert table.get_column("qty").constraint.check_expression == "qty > 0"
    assert table.get_column("code").constraint.unique


def test_parse_named_table_constraint():
    table = parse_create_table(ORDERS_DDL)

    assert len(table.constraints) == 1
    constraint = table.constraints[0]
    assert constraint.name == "orders_code_status"
    assert constraint.unique
    assert constraint.unique_columns == ["code", "status"]


def test_parse_table_primary_key_and_without_rowid():
    """Test a composite key declared at table level on a WITHOUT ROWID table."""
    table = parse_create_table(
        "CREATE TABLE kv (ns TEXT, k TEXT, v BLOB, PRIMARY KEY (ns, k)) WITHOUT ROWID"
    )

    assert table.without_row_id
    assert table.pk == ["ns", "k"]
    assert table.constraints[0].primary_key
    assert not any(c.constraint.primary_key for c in table.columns)


def test_parse_table_foreign_key():
    table = parse_create_table(
        "CREATE TABLE members (team_id INTEGER, FOREIGN KEY (team_id) REFERENCES teams (id))"
    )

    foreign_key = table.constraints[0].foreign_key
    assert foreign_key.columns == ["team_id"]
    assert foreign_key.foreign_table_name == "teams"
    assert foreign_key.foreign_columns == ["id"]


def test_parse_qualified_table_keeps_schema():
    table = parse_create_table("CREATE TABLE aux.logs (line TEXT)", schema_name="main")
    assert table.schema_name == "aux"
    assert table.table_name == "logs"


def test_parse_failure_returns_none(caplog):
    """Test that malformed scripts are reported, not raised."""
    assert parse_create_table("CREATE TABLE broken (id INTEGER,") is None
    assert "Failed to parse CREATE TABLE script" in caplog.text


def test_parse_non_table_returns_none():
    assert parse_create_table("CREATE VIEW v AS SELECT 1") is None


def test_parse_trigger_clauses():
    trigger = parse_create_trigger(
        "CREATE TRIGGER audit_users AFTER UPDATE OF name, email ON users FOR EACH ROW "
        "WHEN NEW.name IS NOT NULL BEGIN INSERT INTO log VALUES (1); END",
        "main",
    )

    assert trigger.name == "audit_users"
    assert trigger.schema_name == "main"
    assert trigger.table_name == "users"
    assert trigger.when == "AFTER"
    assert trigger.operation == "UPDATE"
    assert trigger.column_names == ["name", "email"]
    assert trigger.when_expression == "NEW.name IS NOT NULL"
    assert trigger.statement == "INSERT INTO log VALUES (1);"


def test_parse_trigger_quoted_and_instead_of():
    trigger = parse_create_trigger(
        'CREATE TRIGGER "aux"."on delete" INSTEAD OF DELETE ON "v" BEGIN SELECT 1; END;',
        "main",
    )

    assert trigger.name == "on delete"
    assert trigger.schema_name == "aux"
    assert trigger.when == "INSTEAD OF"
    assert trigger.operation == "DELETE"
    assert trigger.column_names is None


def test_parse_trigger_rejects_other_scripts():
    with pytest.raises(IncompleteMetadataError):
        parse_create_trigger("CREATE TABLE t (a)", "main")


@pytest.mark.parametrize("text,expected", [
    ('"a""b"', 'a"b'),
    ("`a``b`", "a`b"),
    ("[x y]", "x y"),
    ("plain", "plain"),
])
def test_unquote_identifier(text, expected):
    assert unquote_identifier(text) == expected


def test_split_qualified_name():
    assert split_qualified_name('"app"."users"') == ("app", "users")
    assert split_qualified_name("users") == (None, "users")


def test_declared_types_are_kept_as_written():
    table = parse_create_table(
        'CREATE TABLE "prices" ('
        ' "sku" VARCHAR(50) NOT NULL PRIMARY KEY,'
        ' "amount" DECIMAL(10,2) DEFAULT 0,'
        ' "qty" INTEGER,'
        ' "note")'
    )

    assert [(c.name, c.type) for c in table.columns] == [
        ("sku", "VARCHAR(50)"),
        ("amount", "DECIMAL(10,2)"),
        ("qty", "INTEGER"),
        ("note", ""),
    ]
    assert table.get_column("amount").constraint.default_expression == "0"
