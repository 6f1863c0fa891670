"""Tests for catalog row validation and schema folding."""
import logging

import pytest

from dbdrive.core.errors import IncompleteMetadataError
from dbdrive.core.introspect import CatalogRow, SchemaFold, parse_catalog_rows, truthy
from dbdrive.models.schema import DatabaseTableColumn, SchemaItemType


class _Row(CatalogRow):
    table_name: str
    column_name: str


def test_rows_are_matched_case_insensitively():
    rows = parse_catalog_rows(_Row, [{"TABLE_NAME": "users", "Column_Name": "id", "EXTRA": ""}], "columns")
    assert rows[0].table_name == "users"
    assert rows[0].column_name == "id"


def test_missing_field_raises_incomplete_metadata():
    with pytest.raises(IncompleteMetadataError) as excinfo:
        parse_catalog_rows(_Row, [{"table_name": "users"}], "information_schema.columns")
    assert excinfo.value.source == "information_schema.columns"
    assert "Malformed row 0" in str(excinfo.value)


def test_fold_attaches_columns_in_order():
    fold = SchemaFold()
    fold.add_schema("empty")
    fold.add_table("app", "users")
    fold.add_table("app", "active_users", SchemaItemType.VIEW)
    fold.add_column("app", "users", DatabaseTableColumn(name="id", type="int"))
    fold.add_column("app", "users", DatabaseTableColumn(name="name", type="text"))
    fold.add_trigger("app", "users_audit", "users")

    schemas = fold.result()

    assert schemas["empty"] == []
    items = schemas["app"]
    assert [(item.type, item.name) for item in items] == [
        (SchemaItemType.TABLE, "users"),
        (SchemaItemType.VIEW, "active_users"),
        (SchemaItemType.TRIGGER, "users_audit"),
    ]
    assert [c.name for c in items[0].table_schema.columns] == ["id", "name"]
    assert items[2].table_name == "users"


def test_fold_drops_orphan_columns(caplog):
    fold = SchemaFold()
    fold.add_table("app", "users")

    with caplog.at_level(logging.DEBUG, logger="dbdrive.core.introspect"):
        kept = fold.add_column("app", "ghost", DatabaseTableColumn(name="id", type="int"))

    assert not kept
    assert fold.dropped_columns == 1
    assert fold.table("app", "users").columns == []
    assert "table app.ghost is not in the listing" in caplog.text


@pytest.mark.parametrize("value,expected", [
    (True, True), (1, True), ("YES", True), ("t", True),
    (False, False), (0, False), ("NO", False), ("", False), (None, False),
])
def test_truthy(value, expected):
    assert truthy(value) is expected
