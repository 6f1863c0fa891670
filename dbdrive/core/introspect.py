"""Helpers shared by the per-dialect catalog introspectors."""
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from dbdrive.core.errors import IncompleteMetadataError
from dbdrive.models.schema import (
    DatabaseSchemaItem,
    DatabaseSchemas,
    DatabaseTableColumn,
    DatabaseTableSchema,
    SchemaItemType,
)

logger = logging.getLogger(__name__)

RowModel = TypeVar("RowModel", bound=BaseModel)
TableKey = Tuple[str, str]


class CatalogRow(BaseModel):
    """Base for typed catalog rows.

    Catalog views return upper-case column names on some servers and extra
    columns on others, so lookups are case-insensitive and unknown keys are
    ignored.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


def _lower_keys(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {str(key).lower(): value for key, value in row.items()}


def parse_catalog_rows(model: Type[RowModel], rows: Iterable[Mapping[str, Any]], source: str) -> List[RowModel]:
    """Validate raw catalog rows into typed models.

    Args:
        model: Row model to validate into
        rows: Raw rows from a result set
        source: Name of the catalog query, used in error messages

    Returns:
        List of validated row models

    Raises:
        IncompleteMetadataError: If a row lacks a required field
    """
    parsed = []
    for index, row in enumerate(rows):
        try:
            parsed.append(model.model_validate(_lower_keys(row)))
        except ValidationError as e:
            raise IncompleteMetadataError(
                f"Malformed row {index} from {source}: {e.errors()[0].get('msg', e)}",
                source=source,
            ) from e
    return parsed


class SchemaFold:
    """Deterministic merge of schema, table and column listings.

    Schemas and tables are registered first; columns are then attached by
    ``(schema_name, table_name)``. Columns whose table was never registered
    are dropped.
    """

    def __init__(self):
        self.schemas: DatabaseSchemas = {}
        self._tables: Dict[TableKey, DatabaseTableSchema] = {}
        self.dropped_columns = 0

    def add_schema(self, schema_name: str) -> None:
        self.schemas.setdefault(schema_name, [])

    def add_table(
        self,
        schema_name: str,
        table_name: str,
        item_type: SchemaItemType = SchemaItemType.TABLE
    ) -> DatabaseTableSchema:
        self.add_schema(schema_name)
        table = DatabaseTableSchema(schema_name=schema_name, table_name=table_name)
        self._tables[(schema_name, table_name)] = table
        self.schemas[schema_name].append(DatabaseSchemaItem(
            type=item_type,
            name=table_name,
            schema_name=schema_name,
            table_schema=table,
        ))
        return table

    def add_trigger(self, schema_name: str, trigger_name: str, table_name: str) -> None:
        self.add_schema(schema_name)
        self.schemas[schema_name].append(DatabaseSchemaItem(
            type=SchemaItemType.TRIGGER,
            name=trigger_name,
            schema_name=schema_name,
            table_name=table_name,
        ))

    def table(self, schema_name: str, table_name: str) -> Optional[DatabaseTableSchema]:
        return self._tables.get((schema_name, table_name))

    def tables(self) -> List[DatabaseTableSchema]:
        return list(self._tables.values())

    def add_column(self, schema_name: str, table_name: str, column: DatabaseTableColumn) -> bool:
        table = self.table(schema_name, table_name)
        if table is None:
            self.dropped_columns += 1
            logger.debug(
                "Dropping column %s: table %s.%s is not in the listing",
                column.name, schema_name, table_name
            )
            return False
        table.columns.append(column)
        return True

    def result(self) -> DatabaseSchemas:
        logger.info(
            "Introspected %d schema(s), %d table(s)",
            len(self.schemas), len(self._tables)
        )
        return self.schemas


def truthy(value: Any) -> bool:
    """Interpret catalog flags that arrive as bool, int or 'YES'/'NO' text."""
    if isinstance(value, str):
        return value.strip().upper() in ("1", "YES", "Y", "TRUE", "T")
    return bool(value)
