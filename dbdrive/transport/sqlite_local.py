"""In-process transport executing statements against a local SQLite file."""
import logging
import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from dbdrive.core.errors import TransportError
from dbdrive.transport.base import QUERY, TRANSACTION, ResponseHandler, Transport

logger = logging.getLogger(__name__)


class SQLiteFileTransport(Transport):
    """Runs requests one at a time on a dedicated worker thread.

    The sqlite3 connection is created lazily on the worker and only ever used
    there. Responses are delivered from that thread.

    Args:
        path: Database file, or ``":memory:"``
        timeout: Seconds to wait on a locked database
    """

    def __init__(self, path: Union[str, Path], timeout: float = 30.0):
        self.path = str(path)
        self.timeout = timeout
        self._handler: Optional[ResponseHandler] = None
        self._connection: Optional[sqlite3.Connection] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="dbdrive-sqlite")
        self._closed = False

    def listen(self, handler: ResponseHandler) -> None:
        self._handler = handler

    def send(self, kind: str, request_id: int, payload: Union[str, List[str]]) -> None:
        if self._closed:
            raise TransportError("Transport is closed")
        if kind not in (QUERY, TRANSACTION):
            raise TransportError(f"Unknown request kind: {kind}")
        self._executor.submit(self._run, kind, request_id, payload)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._executor.submit(self._disconnect)
        self._executor.shutdown(wait=True)
        logger.info("Closed SQLite transport for %s", self.path)

    def _connect(self) -> sqlite3.Connection:
        if self._connection is None:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            # autocommit; transactions are opened explicitly
            self._connection = sqlite3.connect(
                self.path,
                timeout=self.timeout,
                check_same_thread=False,
                isolation_level=None,
            )
            logger.info("Connected to SQLite: %s", self.path)
        return self._connection

    def _disconnect(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def _run(self, kind: str, request_id: int, payload: Union[str, List[str]]) -> None:
        try:
            if kind == QUERY:
                data: Any = self._execute(self._connect().cursor(), payload)
            else:
                data = self._execute_transaction(payload)
            message: Dict[str, Any] = {"id": request_id, "data": data}
        except sqlite3.Error as e:
            logger.debug("Request %d failed: %s", request_id, e)
            message = {"id": request_id, "error": str(e)}

        if self._handler is None:
            logger.warning("No handler registered, dropping response %d", request_id)
            return
        self._handler(message)

    def _execute_transaction(self, statements: List[str]) -> List[Dict[str, Any]]:
        connection = self._connect()
        cursor = connection.cursor()
        cursor.execute("BEGIN")
        try:
            results = [self._execute(cursor, statement) for statement in statements]
            cursor.execute("COMMIT")
        except sqlite3.Error:
            if connection.in_transaction:
                connection.rollback()
            raise
        return results

    @staticmethod
    def _execute(cursor: sqlite3.Cursor, statement: str) -> Dict[str, Any]:
        logger.debug("Executing: %s", statement)
        started = time.perf_counter()
        cursor.execute(statement)
        rows = cursor.fetchall()
        elapsed = (time.perf_counter() - started) * 1000

        names = [column[0] for column in cursor.description or []]
        return {
            "rows": [dict(zip(names, row)) for row in rows],
            "headers": [{"name": name, "display_name": name} for name in names],
            "stat": {
                "rows_affected": max(cursor.rowcount, 0),
                "rows_read": len(rows),
                "query_duration_ms": elapsed,
            },
            "last_insert_rowid": cursor.lastrowid or None,
        }
