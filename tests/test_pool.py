from __future__ import annotations

import random
import threading
import time

import pytest

from errors import EnrichmentError
from models import Record, RecordRef
from pool import ClosableQueue, WorkerPool


def _records(count: int) -> list[Record]:
    return [Record(record_id=str(i), ref=RecordRef("o", "r", i)) for i in range(count)]


def _mark(record: Record) -> Record:
    record.status = "done"
    return record


def test_closable_queue_iterates_until_closed() -> None:
    q: ClosableQueue[int] = ClosableQueue(3)
    for i in range(3):
        q.put(i)
    q.close()

    assert list(q) == [0, 1, 2]
    assert q.closed is True


def test_closable_queue_rejects_put_after_close_and_overflow() -> None:
    q: ClosableQueue[int] = ClosableQueue(1)
    q.put(1)
    with pytest.raises(RuntimeError):
        q.put(2)
    q.close()
    with pytest.raises(RuntimeError):
        q.put(3)


def test_closable_queue_one_end_marker_per_consumer() -> None:
    q: ClosableQueue[int] = ClosableQueue(0, consumers=3)
    q.close()

    assert [q.get() for _ in range(3)] == [None, None, None]


@pytest.mark.parametrize("workers", [1, 2, 5, 8])
@pytest.mark.parametrize("count", [0, 1, 7, 40])
def test_pool_processes_every_record_exactly_once(workers: int, count: int) -> None:
    seen: list[str] = []
    lock = threading.Lock()

    def enrich(record: Record) -> Record:
        with lock:
            seen.append(record.record_id)
        time.sleep(random.uniform(0, 0.002))
        return _mark(record)

    run = WorkerPool(enrich, workers=workers).run(_records(count))
    results = list(run.results)

    assert sorted(seen, key=int) == [str(i) for i in range(count)]
    assert sorted((r.record.record_id for r in results), key=int) == [str(i) for i in range(count)]
    assert all(r.record.status == "done" for r in results)
    assert run.submitted == count
    assert run.enriched == count
    assert run.dropped == []


def test_pool_results_closed_only_after_all_workers_exit() -> None:
    """The output queue is closed by the time run() returns, and not before workers finish."""
    finished: list[str] = []
    lock = threading.Lock()

    def slow(record: Record) -> Record:
        time.sleep(0.01)
        with lock:
            finished.append(record.record_id)
        return record

    run = WorkerPool(slow, workers=3).run(_records(9))

    assert run.results.closed is True
    assert len(finished) == 9
    assert len(list(run.results)) == 9


def test_pool_drops_failed_records_without_affecting_siblings() -> None:
    def flaky(record: Record) -> Record:
        if record.number in (2, 5):
            raise EnrichmentError("404")
        return _mark(record)

    run = WorkerPool(flaky, workers=4).run(_records(8))
    results = list(run.results)

    assert len(results) == 6
    assert run.enriched == 6
    assert [ref.number for ref in run.dropped] == [2, 5]
    assert {r.record.number for r in results} == {0, 1, 3, 4, 6, 7}


def test_pool_runs_workers_in_parallel() -> None:
    """With W workers, W records are in flight at the same time."""
    barrier = threading.Barrier(3, timeout=5)

    def wait_for_siblings(record: Record) -> Record:
        barrier.wait()
        return record

    run = WorkerPool(wait_for_siblings, workers=3).run(_records(3))

    assert len(list(run.results)) == 3


def test_pool_cancelled_records_are_dropped_without_remote_call() -> None:
    cancel = threading.Event()
    cancel.set()
    calls: list[Record] = []

    run = WorkerPool(lambda r: calls.append(r) or r, workers=2, cancel=cancel).run(_records(4))

    assert calls == []
    assert list(run.results) == []
    assert len(run.dropped) == 4


class _InterruptedRecords(list):
    """Record list whose iteration is interrupted after ``stop_after`` items."""

    def __init__(self, records: list[Record], stop_after: int) -> None:
        super().__init__(records)
        self.stop_after = stop_after

    def __iter__(self):
        for index, record in enumerate(super().__iter__()):
            if index == self.stop_after:
                raise KeyboardInterrupt
            yield record


def test_pool_interrupted_while_queueing_still_releases_workers() -> None:
    cancel = threading.Event()
    records = _InterruptedRecords(_records(6), stop_after=2)

    with pytest.raises(KeyboardInterrupt):
        WorkerPool(_mark, workers=3, cancel=cancel).run(records)

    assert cancel.is_set()


def test_pool_reraises_unexpected_worker_errors_after_join() -> None:
    def broken(record: Record) -> Record:
        raise KeyError("bug")

    with pytest.raises(KeyError):
        WorkerPool(broken, workers=2).run(_records(3))


def test_pool_rejects_zero_workers() -> None:
    with pytest.raises(ValueError):
        WorkerPool(_mark, workers=0)
