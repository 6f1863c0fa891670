"""Correlation of asynchronous requests with their responses."""
import asyncio
import logging
import threading
from collections import OrderedDict
from typing import Any, List, Optional, Tuple

from dbdrive.core.errors import TransportError

logger = logging.getLogger(__name__)


class RequestTracker:
    """Hands out request ids and resolves the matching futures.

    Ids increase monotonically and are never reused within a tracker.
    ``resolve`` may be called from any thread; results are delivered on the
    event loop that registered the request.

    Args:
        max_pending: Optional cap on outstanding requests. When reached, the
            oldest pending request fails with TransportError to make room.
    """

    def __init__(self, max_pending: Optional[int] = None):
        if max_pending is not None and max_pending < 1:
            raise ValueError("max_pending must be at least 1")
        self.max_pending = max_pending
        self._counter = 0
        self._lock = threading.Lock()
        self._pending: "OrderedDict[int, Tuple[asyncio.AbstractEventLoop, asyncio.Future]]" = OrderedDict()

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def register(self) -> Tuple[int, asyncio.Future]:
        """Allocate an id and the future its response will complete.

        Must be called from a running event loop.
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        evicted = None
        with self._lock:
            self._counter += 1
            request_id = self._counter
            if self.max_pending is not None and len(self._pending) >= self.max_pending:
                oldest_id, evicted = self._pending.popitem(last=False)
                logger.warning(
                    "Pending request cap %d reached, failing request %d",
                    self.max_pending, oldest_id
                )
            self._pending[request_id] = (loop, future)

        if evicted is not None:
            evicted_loop, evicted_future = evicted
            self._deliver(
                evicted_loop, evicted_future,
                error=TransportError("Request evicted: too many pending requests")
            )
        return request_id, future

    def resolve(self, request_id: int, result: Any = None, error: Optional[BaseException] = None) -> bool:
        """Complete a pending request with a result or an error.

        Returns:
            False when the id is unknown (already resolved, evicted or never issued)
        """
        with self._lock:
            entry = self._pending.pop(request_id, None)
        if entry is None:
            logger.warning("Response for unknown request id %s ignored", request_id)
            return False
        loop, future = entry
        self._deliver(loop, future, result=result, error=error)
        return True

    def discard(self, request_id: int) -> bool:
        """Forget a request whose send never happened; its future is cancelled."""
        with self._lock:
            entry = self._pending.pop(request_id, None)
        if entry is None:
            return False
        entry[1].cancel()
        return True

    def fail_all(self, error: BaseException) -> int:
        """Fail every outstanding request, e.g. when the transport closes."""
        with self._lock:
            entries: List[Tuple[asyncio.AbstractEventLoop, asyncio.Future]] = list(self._pending.values())
            self._pending.clear()
        for loop, future in entries:
            self._deliver(loop, future, error=error)
        return len(entries)

    @staticmethod
    def _deliver(loop, future, result=None, error=None) -> None:
        def complete():
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(result)

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            complete()
        elif not loop.is_closed():
            loop.call_soon_threadsafe(complete)
