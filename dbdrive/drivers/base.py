"""Abstract base class for SQL dialect drivers."""
import logging
import warnings
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from dbdrive.core.diff import AlterSyntax, SchemaChangePlan, SchemaChangeWarning, generate_schema_change
from dbdrive.core.escape import SqlCodec
from dbdrive.core.statements import (
    drop_table_statement,
    empty_table_statement,
    find_first_statement,
    select_table_statement,
    table_operation_statement,
)
from dbdrive.core.type_selector import ColumnTypeSelector
from dbdrive.models.change import DatabaseTableSchemaChange
from dbdrive.models.flags import DriverFlags
from dbdrive.models.operation import (
    DatabaseTableOperation,
    DatabaseTableOperationResponse,
    OperationType,
    SelectFromTableOptions,
    SelectTableResult,
)
from dbdrive.models.schema import (
    DatabaseResultSet,
    DatabaseSchemas,
    DatabaseTableSchema,
    DatabaseTriggerSchema,
)

logger = logging.getLogger(__name__)


class Driver(ABC):
    """Uniform interface over one SQL dialect.

    A driver owns its capability flags, codec and type catalog and talks to
    the database only through ``connection``, any object exposing async
    ``query(statement)`` and ``transaction(statements)`` (normally a
    ``TransportConnection``). Drivers hold no other state, so one instance
    can serve concurrent requests.

    Subclasses set ``FLAGS``, ``codec`` and ``column_type_selector`` and
    implement catalog introspection.
    """

    FLAGS: DriverFlags
    codec: SqlCodec
    column_type_selector: ColumnTypeSelector
    alter_syntax: Optional[AlterSyntax] = None

    def __init__(self, connection: Any, flag_overrides: Optional[Dict[str, Any]] = None):
        self.connection = connection
        self.flags = self.FLAGS.model_copy(update=flag_overrides) if flag_overrides else self.FLAGS

    async def query(self, statement: str) -> DatabaseResultSet:
        """Execute one statement in a single transport round trip.

        Raises:
            TransportError: If the transport reports a failure
        """
        logger.debug("Query: %s", statement)
        return await self.connection.query(statement)

    async def transaction(self, statements: List[str]) -> List[DatabaseResultSet]:
        """Forward statements as one unit; atomicity is up to the transport."""
        logger.debug("Transaction of %d statement(s)", len(statements))
        return await self.connection.transaction(statements)

    def escape_id(self, identifier: str) -> str:
        return self.codec.escape_id(identifier)

    def escape_value(self, value: Any) -> str:
        return self.codec.escape_value(value)

    def get_flags(self) -> DriverFlags:
        return self.flags

    @abstractmethod
    async def schemas(self) -> DatabaseSchemas:
        """List every user schema with its tables, views and triggers.

        Raises:
            IncompleteMetadataError: If catalog rows lack required fields
        """

    @abstractmethod
    async def table_schema(self, schema_name: str, table_name: str) -> DatabaseTableSchema:
        """Fresh definition of one table, columns in ordinal order.

        Raises:
            IncompleteMetadataError: If catalog rows lack required fields
        """

    @abstractmethod
    async def trigger(self, schema_name: str, name: str) -> DatabaseTriggerSchema:
        """Definition of one trigger.

        Raises:
            UnsupportedOperationError: If the dialect has no trigger introspection
        """

    async def get_current_schema(self) -> str:
        """Schema unqualified names resolve to."""
        return self.flags.default_schema

    def plan_update_table_schema(self, change: DatabaseTableSchemaChange) -> SchemaChangePlan:
        """DDL plan with warnings for a table change; nothing is executed."""
        return generate_schema_change(change, self.flags, self.codec, self.alter_syntax)

    def create_update_table_schema(self, change: DatabaseTableSchemaChange) -> List[str]:
        """Ordered DDL statements for a table change; nothing is executed.

        Plan warnings are logged and re-emitted as SchemaChangeWarning.

        Raises:
            UnsupportedOperationError: If any part of the change cannot be
                expressed under this driver's flags
        """
        plan = self.plan_update_table_schema(change)
        for message in plan.warnings:
            warnings.warn(message, SchemaChangeWarning, stacklevel=2)
        return plan.statements

    async def select_table(
        self,
        schema_name: str,
        table_name: str,
        options: Optional[SelectFromTableOptions] = None
    ) -> SelectTableResult:
        """Browse a page of rows together with the table definition."""
        table = await self.table_schema(schema_name, table_name)
        statement = select_table_statement(
            self.codec, self.flags, table, options or SelectFromTableOptions()
        )
        data = await self.query(statement)
        return SelectTableResult(data=data, table_schema=table)

    async def find_first(
        self,
        schema_name: str,
        table_name: str,
        key: Dict[str, Any]
    ) -> DatabaseResultSet:
        return await self.query(find_first_statement(self.codec, schema_name, table_name, key))

    async def drop_table(self, schema_name: str, table_name: str) -> None:
        await self.query(drop_table_statement(self.codec, schema_name, table_name))

    async def empty_table(self, schema_name: str, table_name: str) -> None:
        await self.query(empty_table_statement(self.codec, schema_name, table_name))

    async def update_table_data(
        self,
        schema_name: str,
        table_name: str,
        operations: List[DatabaseTableOperation],
        table: Optional[DatabaseTableSchema] = None
    ) -> List[DatabaseTableOperationResponse]:
        """Apply row edits in one transaction.

        When the dialect cannot return rows from INSERT/UPDATE, the stored
        row is read back by key afterwards. ``table`` supplies the primary
        key used for that lookup after an INSERT.

        Raises:
            ValueError: If an edit is malformed (e.g. UPDATE without key)
            TransportError: If the transaction fails
        """
        statements = [
            table_operation_statement(self.codec, self.flags, schema_name, table_name, op)
            for op in operations
        ]
        results = await self.transaction(statements)

        responses = []
        for operation, result in zip(operations, results):
            response = DatabaseTableOperationResponse(last_id=result.last_insert_rowid)
            if operation.operation == OperationType.INSERT:
                if self.flags.support_insert_returning:
                    response.record = result.rows[0] if result.rows else None
                else:
                    key = _inserted_row_key(operation, result, table)
                    if key:
                        found = await self.find_first(schema_name, table_name, key)
                        response.record = found.rows[0] if found.rows else None
            elif operation.operation == OperationType.UPDATE:
                if self.flags.support_update_returning:
                    response.record = result.rows[0] if result.rows else None
                else:
                    key = {**operation.where}
                    key.update({k: v for k, v in operation.values.items() if k in key})
                    found = await self.find_first(schema_name, table_name, key)
                    response.record = found.rows[0] if found.rows else None
            responses.append(response)
        return responses


def _inserted_row_key(
    operation: DatabaseTableOperation,
    result: DatabaseResultSet,
    table: Optional[DatabaseTableSchema]
) -> Dict[str, Any]:
    if table is None or not table.pk:
        return {}
    if all(name in operation.values for name in table.pk):
        return {name: operation.values[name] for name in table.pk}
    if len(table.pk) == 1 and result.last_insert_rowid is not None:
        return {table.pk[0]: result.last_insert_rowid}
    return {}
