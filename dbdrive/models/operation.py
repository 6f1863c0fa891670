"""Row-level table operations and table browsing options."""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from dbdrive.models.schema import DatabaseResultSet, DatabaseTableSchema


class SortDirection(str, Enum):
    """ORDER BY direction."""

    ASC = "ASC"
    DESC = "DESC"


class ColumnOrder(BaseModel):
    """One ORDER BY term."""

    column_name: str
    by: SortDirection = SortDirection.ASC


class SelectFromTableOptions(BaseModel):
    """Paging, filtering and ordering for browsing a table.

    ``where_raw`` is a filter expression typed by the user and is sent as-is.
    """

    where_raw: Optional[str] = None
    order_by: List[ColumnOrder] = []
    limit: int = Field(default=50, ge=0)
    offset: int = Field(default=0, ge=0)


class SelectTableResult(BaseModel):
    """Rows of a browsed table together with the schema used to read them."""

    data: DatabaseResultSet
    table_schema: DatabaseTableSchema


class OperationType(str, Enum):
    """Kinds of row edits the table editor can submit."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class DatabaseTableOperation(BaseModel):
    """A single row edit. ``where`` identifies the row for UPDATE and DELETE."""

    operation: OperationType
    values: Dict[str, Any] = {}
    where: Dict[str, Any] = {}


class DatabaseTableOperationResponse(BaseModel):
    """Outcome of a row edit: the inserted id and the row as stored, when known."""

    last_id: Optional[int] = None
    record: Optional[Dict[str, Any]] = None
