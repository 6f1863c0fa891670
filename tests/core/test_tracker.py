"""Tests for request/response correlation."""
import asyncio
import threading

import pytest

from dbdrive.core.errors import TransportError
from dbdrive.core.tracker import RequestTracker


@pytest.mark.asyncio
async def test_ids_are_monotonic_and_unique():
    tracker = RequestTracker()
    ids = [tracker.register()[0] for _ in range(5)]
    assert ids == [1, 2, 3, 4, 5]
    assert tracker.pending == 5
    for request_id in ids:
        tracker.resolve(request_id)


@pytest.mark.asyncio
async def test_out_of_order_resolution():
    tracker = RequestTracker()
    first_id, first = tracker.register()
    second_id, second = tracker.register()

    assert tracker.resolve(second_id, result="second")
    assert tracker.resolve(first_id, result="first")

    assert await first == "first"
    assert await second == "second"
    assert tracker.pending == 0


@pytest.mark.asyncio
async def test_error_resolution_raises_in_awaiter():
    tracker = RequestTracker()
    request_id, future = tracker.register()

    tracker.resolve(request_id, error=TransportError("no such table: users"))

    with pytest.raises(TransportError, match="no such table"):
        await future


@pytest.mark.asyncio
async def test_unknown_and_duplicate_ids_are_ignored(caplog):
    tracker = RequestTracker()
    request_id, future = tracker.register()

    assert tracker.resolve(request_id, result=1)
    assert not tracker.resolve(request_id, result=2)
    assert not tracker.resolve(999, result=3)

    assert await future == 1
    assert "unknown request id 999" in caplog.text


@pytest.mark.asyncio
async def test_resolve_from_another_thread():
    tracker = RequestTracker()
    request_id, future = tracker.register()

    worker = threading.Thread(target=tracker.resolve, args=(request_id,), kwargs={"result": "ok"})
    worker.start()
    worker.join()

    assert await asyncio.wait_for(future, timeout=5) == "ok"


@pytest.mark.asyncio
async def test_max_pending_evicts_oldest():
    tracker = RequestTracker(max_pending=2)
    _, oldest = tracker.register()
    second_id, _ = tracker.register()
    third_id, _ = tracker.register()

    assert tracker.pending == 2
    with pytest.raises(TransportError, match="evicted"):
        await oldest
    assert tracker.resolve(second_id)
    assert tracker.resolve(third_id)


@pytest.mark.asyncio
async def test_fail_all_and_discard():
    tracker = RequestTracker()
    _, failed = tracker.register()
    discarded_id, discarded = tracker.register()

    assert tracker.discard(discarded_id)
    assert not tracker.discard(discarded_id)
    assert discarded.cancelled()

    assert tracker.fail_all(TransportError("Connection closed")) == 1
    with pytest.raises(TransportError, match="Connection closed"):
        await failed


def test_invalid_max_pending():
    with pytest.raises(ValueError):
        RequestTracker(max_pending=0)


def test_register_requires_running_loop():
    with pytest.raises(RuntimeError):
        RequestTracker().register()
