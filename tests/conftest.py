"""Common test fixtures."""
# pylint: disable=redefined-outer-name,too-many-arguments,too-many-positional-arguments
from typing import Any, Dict, List

import pytest

from dbdrive.core.errors import TransportError
from dbdrive.models.schema import (
    DatabaseColumnConstraint,
    DatabaseResultSet,
    DatabaseTableColumn,
    DatabaseTableSchema,
)
from dbdrive.transport.base import Transport, TransportConnection
from dbdrive.transport.sqlite_local import SQLiteFileTransport


@pytest.fixture
def column_factory():
    """Factory to create DatabaseTableColumn instances for testing."""
    def _make_column(name="id", type="INTEGER", **constraint):
        return DatabaseTableColumn(
            name=name,
            type=type,
            constraint=DatabaseColumnConstraint(**constraint) if constraint else None
        )
    return _make_column


@pytest.fixture
def table_factory(column_factory):
    """Factory to create DatabaseTableSchema instances for testing."""
    def _make_table(
        schema_name="main",
        table_name="users",
        columns=None,
        constraints=None,
        pk=None
    ):
        if columns is None:
            columns = [column_factory(primary_key=True)]
        return DatabaseTableSchema(
            schema_name=schema_name,
            table_name=table_name,
            columns=columns,
            constraints=constraints or [],
            pk=pk or []
        )
    return _make_table


class ScriptedConnection:
    """Stands in for a TransportConnection, answering catalog queries from a script.

    ``script`` maps a substring of a statement to the rows returned for it;
    the first matching entry wins. Unmatched statements return no rows.
    """

    def __init__(self, script: Dict[str, List[Dict[str, Any]]] = None, fail_on: str = None):
        self.script = script or {}
        self.fail_on = fail_on
        self.statements: List[str] = []
        self.transactions: List[List[str]] = []

    def _answer(self, statement: str) -> DatabaseResultSet:
        if self.fail_on and self.fail_on in statement:
            raise TransportError(f"scripted failure for: {self.fail_on}")
        for needle, rows in self.script.items():
            if needle in statement:
                return DatabaseResultSet(rows=rows)
        return DatabaseResultSet()

    async def query(self, statement: str) -> DatabaseResultSet:
        self.statements.append(statement)
        return self._answer(statement)

    async def transaction(self, statements: List[str]) -> List[DatabaseResultSet]:
        self.transactions.append(list(statements))
        return [self._answer(statement) for statement in statements]


@pytest.fixture
def scripted_connection():
    """Factory for ScriptedConnection instances."""
    def _make(script=None, fail_on=None):
        return ScriptedConnection(script, fail_on)
    return _make


class FakeTransport(Transport):
    """Records requests; tests deliver responses by hand through ``respond``."""

    def __init__(self):
        self.handler = None
        self.sent = []
        self.closed = False

    def listen(self, handler):
        self.handler = handler

    def send(self, kind, request_id, payload):
        self.sent.append((kind, request_id, payload))

    def respond(self, message):
        self.handler(message)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def sqlite_connection(tmp_path):
    """TransportConnection to a fresh SQLite file, closed after the test."""
    connection = TransportConnection(SQLiteFileTransport(tmp_path / "test.db"))
    yield connection
    connection.close()
