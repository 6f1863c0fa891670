"""Table schema change descriptions handed from the schema editor to the diff engine."""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, model_validator

from dbdrive.models.schema import (
    DatabaseTableColumn,
    DatabaseTableConstraint,
    DatabaseTableSchema,
)


class ChangeKind(str, Enum):
    """Tag of a single column or constraint operation."""

    UNCHANGED = "unchanged"
    ADDED = "added"
    REMOVED = "removed"
    CHANGED = "changed"


def _kind_of(old, new) -> ChangeKind:
    if old is None:
        return ChangeKind.ADDED
    if new is None:
        return ChangeKind.REMOVED
    if old == new:
        return ChangeKind.UNCHANGED
    return ChangeKind.CHANGED


class TableNameChange(BaseModel):
    """Old and new table names. ``old`` is None when the table is being created."""

    old: Optional[str] = None
    new: Optional[str] = None


class DatabaseTableColumnChange(BaseModel):
    """A column operation keyed by the editor's stable column identity.

    ``old`` is the column as it exists in the database, ``new`` the column
    as the user wants it. Renames keep the same key, so the engine never
    confuses a rename with a drop followed by an add.
    """

    key: str
    old: Optional[DatabaseTableColumn] = None
    new: Optional[DatabaseTableColumn] = None

    @model_validator(mode="after")
    def _check_sides(self):
        if self.old is None and self.new is None:
            raise ValueError(f"Column change '{self.key}' has neither an old nor a new column")
        return self

    @property
    def kind(self) -> ChangeKind:
        return _kind_of(self.old, self.new)

    @property
    def renamed(self) -> bool:
        return self.kind == ChangeKind.CHANGED and self.old.name != self.new.name

    @property
    def retyped(self) -> bool:
        return self.kind == ChangeKind.CHANGED and self.old.type != self.new.type


class DatabaseTableConstraintChange(BaseModel):
    """A table-level constraint operation keyed by editor identity."""

    key: str
    old: Optional[DatabaseTableConstraint] = None
    new: Optional[DatabaseTableConstraint] = None

    @model_validator(mode="after")
    def _check_sides(self):
        if self.old is None and self.new is None:
            raise ValueError(
                f"Constraint change '{self.key}' has neither an old nor a new constraint"
            )
        return self

    @property
    def kind(self) -> ChangeKind:
        return _kind_of(self.old, self.new)


class DatabaseTableSchemaChange(BaseModel):
    """Everything needed to turn one table definition into another."""

    schema_name: Optional[str] = None
    name: TableNameChange
    columns: List[DatabaseTableColumnChange] = []
    constraints: List[DatabaseTableConstraintChange] = []
    without_row_id: bool = False

    @property
    def is_create(self) -> bool:
        return not self.name.old

    @classmethod
    def from_table_schema(cls, table: DatabaseTableSchema) -> "DatabaseTableSchemaChange":
        """Seed an editable change from an introspected table; every operation starts unchanged."""
        return cls(
            schema_name=table.schema_name,
            name=TableNameChange(old=table.table_name, new=table.table_name),
            columns=[
                DatabaseTableColumnChange(
                    key=column.name,
                    old=column.model_copy(deep=True),
                    new=column.model_copy(deep=True),
                )
                for column in table.columns
            ],
            constraints=[
                DatabaseTableConstraintChange(
                    key=constraint.name or f"constraint-{index}",
                    old=constraint.model_copy(deep=True),
                    new=constraint.model_copy(deep=True),
                )
                for index, constraint in enumerate(table.constraints)
            ],
            without_row_id=table.without_row_id,
        )

    def find_column(self, key: str) -> Optional[DatabaseTableColumnChange]:
        """Look up a column operation by its identity key."""
        for column in self.columns:
            if column.key == key:
                return column
        return None
