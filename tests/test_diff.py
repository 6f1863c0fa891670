"""Tests for building a table change from two snapshots."""
from dbdrive.core.diff import diff_table_schemas, partition_columns
from dbdrive.drivers.mysql import MySQLDriver
from dbdrive.models.change import ChangeKind
from dbdrive.models.schema import DatabaseTableConstraint


def test_identical_tables_have_no_changes(table_factory):
    """Test that identical tables produce only unchanged operations."""
    table = table_factory()
    change = diff_table_schemas(table, table)
    assert all(op.kind == ChangeKind.UNCHANGED for op in change.columns)
    assert MySQLDriver(None).create_update_table_schema(change) == []


def test_column_addition_and_removal(table_factory, column_factory):
    """Test detection of added and removed columns."""
    id_col = column_factory(primary_key=True)
    before = table_factory(columns=[id_col, column_factory("legacy", "TEXT")])
    after = table_factory(columns=[id_col, column_factory("email", "TEXT")])

    change = diff_table_schemas(before, after)
    partition = partition_columns(change)

    assert [op.new.name for op in partition.added] == ["email"]
    assert [op.old.name for op in partition.removed] == ["legacy"]
    assert change.find_column("new:email").kind == ChangeKind.ADDED
    assert change.columns[-1].key == "legacy"


def test_rename_mapping_keeps_identity(table_factory, column_factory):
    """Test that a mapped rename becomes one changed column, not a drop and add."""
    before = table_factory(columns=[column_factory(primary_key=True), column_factory("name", "TEXT")])
    after = table_factory(columns=[column_factory(primary_key=True), column_factory("full_name", "TEXT")])

    change = diff_table_schemas(before, after, renames={"name": "full_name"})

    operation = change.find_column("name")
    assert operation.kind == ChangeKind.CHANGED
    assert operation.renamed
    assert len(change.columns) == 2


def test_without_rename_mapping_is_drop_and_add(table_factory, column_factory):
    before = table_factory(columns=[column_factory(primary_key=True), column_factory("name", "TEXT")])
    after = table_factory(columns=[column_factory(primary_key=True), column_factory("full_name", "TEXT")])

    change = diff_table_schemas(before, after)

    kinds = sorted(op.kind.value for op in change.columns)
    assert kinds == ["added", "removed", "unchanged"]


def test_type_change(table_factory, column_factory):
    before = table_factory(columns=[column_factory("age", "INT")])
    after = table_factory(columns=[column_factory("age", "BIGINT")])

    operation = diff_table_schemas(before, after).find_column("age")

    assert operation.retyped
    assert operation.old.type == "INT"
    assert operation.new.type == "BIGINT"


def test_constraints_are_matched_by_name(table_factory):
    old_check = DatabaseTableConstraint(name="age_check", check_expression="age > 0")
    new_check = DatabaseTableConstraint(name="age_check", check_expression="age >= 0")
    unnamed = DatabaseTableConstraint(unique=True, unique_columns=["id"])
    before = table_factory(constraints=[old_check, unnamed])
    after = table_factory(constraints=[new_check])

    change = diff_table_schemas(before, after)

    assert [(op.key, op.kind) for op in change.constraints] == [
        ("age_check", ChangeKind.CHANGED),
        ("removed-constraint-0", ChangeKind.REMOVED),
    ]


def test_table_rename_and_without_rowid(table_factory):
    before = table_factory(table_name="users")
    after = table_factory(table_name="people").model_copy(update={"without_row_id": True})

    change = diff_table_schemas(before, after)

    assert change.name.old == "users"
    assert change.name.new == "people"
    assert change.without_row_id
    assert not change.is_create


def test_key_on_a_renamed_column_is_unchanged(table_factory, column_factory):
    """A key that only follows a column rename needs no DDL of its own."""
    columns = [column_factory("a", "int"), column_factory("b", "int")]
    before = table_factory(
        columns=columns,
        constraints=[DatabaseTableConstraint(name="PRIMARY", primary_key=True, primary_columns=["a", "b"])],
    )
    after = table_factory(
        columns=[column_factory("a2", "int"), column_factory("b", "int")],
        constraints=[DatabaseTableConstraint(name="PRIMARY", primary_key=True, primary_columns=["a2", "b"])],
    )

    change = diff_table_schemas(before, after, renames={"a": "a2"})

    assert [op.kind for op in change.constraints] == [ChangeKind.UNCHANGED]
    assert change.constraints[0].old.primary_columns == ["a", "b"]
    assert MySQLDriver(None).create_update_table_schema(change) == [
        "ALTER TABLE `main`.`users` CHANGE `a` `a2` int"
    ]
