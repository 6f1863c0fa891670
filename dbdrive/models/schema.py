from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class DatabaseForeignKeyReference(BaseModel):
    """Target of a foreign key: the referenced table and its columns."""

    columns: List[str] = []
    foreign_schema_name: Optional[str] = None
    foreign_table_name: str
    foreign_columns: List[str] = []


class DatabaseColumnConstraint(BaseModel):
    """Column-level constraints as they appear inside a column definition."""

    name: Optional[str] = None
    primary_key: bool = False
    primary_key_order: Optional[str] = None
    auto_increment: bool = False
    not_null: bool = False
    unique: bool = False
    default_value: Any = None
    default_expression: Optional[str] = None
    # MySQL ``ON UPDATE`` clause, e.g. CURRENT_TIMESTAMP
    on_update_expression: Optional[str] = None
    check_expression: Optional[str] = None
    collate: Optional[str] = None
    generated_expression: Optional[str] = None
    generated_type: Optional[str] = None
    foreign_key: Optional[DatabaseForeignKeyReference] = None


class DatabaseTableConstraint(BaseModel):
    """Table-level constraint. Exactly one kind is set."""

    name: Optional[str] = None
    primary_key: bool = False
    primary_columns: List[str] = []
    unique: bool = False
    unique_columns: List[str] = []
    check_expression: Optional[str] = None
    foreign_key: Optional[DatabaseForeignKeyReference] = None

    @property
    def kind(self) -> str:
        """Short label used in log lines and error messages."""
        if self.primary_key:
            return "PRIMARY KEY"
        if self.unique:
            return "UNIQUE"
        if self.foreign_key is not None:
            return "FOREIGN KEY"
        if self.check_expression is not None:
            return "CHECK"
        return "UNKNOWN"


class DatabaseTableColumn(BaseModel):
    """Represents a database column definition."""

    name: str
    type: str
    constraint: Optional[DatabaseColumnConstraint] = None


class DatabaseTableSchema(BaseModel):
    """Represents a database table definition.

    Column order is the physical ordinal order reported by the catalog.
    """

    schema_name: str
    table_name: str
    columns: List[DatabaseTableColumn] = []
    pk: List[str] = []
    auto_increment: bool = False
    constraints: List[DatabaseTableConstraint] = []
    without_row_id: bool = False
    create_script: Optional[str] = None

    def get_column(self, name: str) -> Optional[DatabaseTableColumn]:
        """Look up a column by name."""
        for column in self.columns:
            if column.name == name:
                return column
        return None


class SchemaItemType(str, Enum):
    """Kinds of objects listed under a schema."""

    TABLE = "table"
    VIEW = "view"
    TRIGGER = "trigger"


class DatabaseSchemaItem(BaseModel):
    """A table, view or trigger inside a schema."""

    type: SchemaItemType
    name: str
    schema_name: str
    table_name: Optional[str] = None
    table_schema: Optional[DatabaseTableSchema] = None


DatabaseSchemas = Dict[str, List[DatabaseSchemaItem]]


class DatabaseTriggerSchema(BaseModel):
    """A trigger definition split into its clauses."""

    name: str
    schema_name: str
    table_name: str
    when: Optional[str] = None
    operation: str
    column_names: Optional[List[str]] = None
    when_expression: Optional[str] = None
    statement: str = ""


class DatabaseResultHeader(BaseModel):
    """Column header of a result set."""

    name: str
    display_name: Optional[str] = None
    original_type: Optional[str] = None


class DatabaseResultStat(BaseModel):
    """Execution statistics reported with a result set."""

    rows_affected: int = 0
    rows_read: Optional[int] = None
    rows_written: Optional[int] = None
    query_duration_ms: Optional[float] = None


class DatabaseResultSet(BaseModel):
    """Rows and metadata returned for one executed statement."""

    rows: List[Dict[str, Any]] = []
    headers: List[DatabaseResultHeader] = []
    stat: DatabaseResultStat = Field(default_factory=DatabaseResultStat)
    last_insert_rowid: Optional[int] = None
