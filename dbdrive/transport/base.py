"""Transport contract and the request/response connection built on it."""
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ValidationError

from dbdrive.core.errors import TransportError
from dbdrive.core.tracker import RequestTracker
from dbdrive.models.schema import DatabaseResultSet

logger = logging.getLogger(__name__)

QUERY = "query"
TRANSACTION = "transaction"

ResponseHandler = Callable[[Dict[str, Any]], None]


class TransportResponse(BaseModel):
    """One message coming back from a transport."""

    id: int
    data: Any = None
    error: Optional[str] = None


class Transport(ABC):
    """Message channel to wherever statements actually execute.

    Every request sent eventually yields exactly one ``{id, data}`` or
    ``{id, error}`` message to the registered handler. Handlers may be
    invoked from any thread.
    """

    @abstractmethod
    def listen(self, handler: ResponseHandler) -> None:
        """Register the callback receiving response messages."""

    @abstractmethod
    def send(self, kind: str, request_id: int, payload: Union[str, List[str]]) -> None:
        """Dispatch a request.

        Args:
            kind: ``"query"`` with a single statement or ``"transaction"``
                with a list of statements
            request_id: Correlation id echoed back in the response
            payload: Statement or statements
        """

    def close(self) -> None:
        """Release transport resources."""


class TransportConnection:
    """Asynchronous ``query``/``transaction`` over a message transport.

    Requests are correlated through a RequestTracker, so any number may be
    in flight and responses can arrive in any order.
    """

    def __init__(self, transport: Transport, tracker: Optional[RequestTracker] = None):
        self.transport = transport
        self.tracker = tracker or RequestTracker()
        self.transport.listen(self._on_message)

    def _on_message(self, message: Dict[str, Any]) -> None:
        try:
            response = TransportResponse.model_validate(message)
        except ValidationError:
            logger.warning("Discarding malformed transport message: %r", message)
            return

        if response.error is not None:
            self.tracker.resolve(response.id, error=TransportError(response.error))
        else:
            self.tracker.resolve(response.id, result=response.data)

    async def _request(self, kind: str, payload: Union[str, List[str]]) -> Any:
        request_id, future = self.tracker.register()
        logger.debug("Sending %s request %d", kind, request_id)
        try:
            self.transport.send(kind, request_id, payload)
        except Exception:
            self.tracker.discard(request_id)
            raise
        return await future

    async def query(self, statement: str) -> DatabaseResultSet:
        """Execute one statement."""
        data = await self._request(QUERY, statement)
        return _to_result_set(data)

    async def transaction(self, statements: List[str]) -> List[DatabaseResultSet]:
        """Execute statements as one transport unit."""
        data = await self._request(TRANSACTION, list(statements))
        if not isinstance(data, list):
            raise TransportError(f"Transaction response is not a list: {type(data).__name__}")
        if len(data) != len(statements):
            raise TransportError(
                f"Transaction returned {len(data)} result(s) for {len(statements)} statement(s)"
            )
        return [_to_result_set(item) for item in data]

    def close(self) -> None:
        self.tracker.fail_all(TransportError("Connection closed"))
        self.transport.close()
        logger.info("Transport connection closed")


def _to_result_set(data: Any) -> DatabaseResultSet:
    if isinstance(data, DatabaseResultSet):
        return data
    try:
        return DatabaseResultSet.model_validate(data)
    except ValidationError as e:
        raise TransportError(f"Malformed result set: {e.errors()[0].get('msg', e)}") from e
