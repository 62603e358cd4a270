"""Bounded worker pool that enriches records concurrently.

The driver enqueues every record, closes the input queue, waits for all
workers to exit, and only then closes the output queue. Consumers of
``PoolRun.results`` therefore never block forever and never see a partial
result set.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from errors import EnrichmentError
from models import EnrichmentResult, Record, RecordRef

DEFAULT_WORKERS = 5

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class ClosableQueue(Generic[T]):
    """FIFO queue with an explicit close, sized up front so ``put`` never blocks.

    ``close`` appends one end marker per consumer. Because markers land after
    every item, a consumer that reads its marker knows the queue is both
    closed and drained.
    """

    def __init__(self, maxsize: int, consumers: int = 1) -> None:
        if consumers < 1:
            raise ValueError("ClosableQueue requires consumers >= 1")
        self._consumers = consumers
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize + consumers)
        self._capacity = maxsize
        self._count = 0
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, item: T) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("put() on a closed queue")
            if self._count >= self._capacity:
                raise RuntimeError(f"queue capacity {self._capacity} exceeded")
            self._count += 1
            self._queue.put_nowait(item)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for _ in range(self._consumers):
                self._queue.put_nowait(_CLOSED)

    def get(self) -> T | None:
        """Block for the next item; return None once this consumer reaches the end."""
        item = self._queue.get()
        if item is _CLOSED:
            return None
        return item

    def __iter__(self) -> Iterator[T]:
        while True:
            item = self.get()
            if item is None:
                return
            yield item


@dataclass(slots=True)
class PoolRun:
    """Outcome of one pool run.

    ``results`` is already closed when the run returns; iterating it drains the
    enriched records without blocking.
    """

    results: ClosableQueue[EnrichmentResult]
    submitted: int
    dropped: list[RecordRef] = field(default_factory=list)

    @property
    def enriched(self) -> int:
        return self.submitted - len(self.dropped)


class WorkerPool:
    """Fixed number of threads, each running one enrichment per record."""

    def __init__(
        self,
        enrich: Callable[[Record], Record],
        workers: int = DEFAULT_WORKERS,
        cancel: threading.Event | None = None,
    ) -> None:
        if workers < 1:
            raise ValueError("WorkerPool requires workers >= 1")
        self.enrich = enrich
        self.workers = workers
        self.cancel = cancel or threading.Event()

    def run(self, records: Sequence[Record]) -> PoolRun:
        """Enrich ``records`` and return once every worker has exited."""
        total = len(records)
        inbox: ClosableQueue[Record] = ClosableQueue(total, consumers=self.workers)
        outbox: ClosableQueue[EnrichmentResult] = ClosableQueue(total)

        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="enrich") as executor:
            futures = [executor.submit(self._work, inbox, outbox) for _ in range(self.workers)]

            try:
                for record in records:
                    inbox.put(record)
            except KeyboardInterrupt:
                LOGGER.warning("Interrupted while queueing, cancelling remaining work")
                self.cancel.set()
                raise
            finally:
                inbox.close()

            dropped = self._join(futures)

        outbox.close()
        LOGGER.info(
            "Worker pool: workers=%s submitted=%s enriched=%s dropped=%s",
            self.workers,
            total,
            total - len(dropped),
            len(dropped),
        )
        return PoolRun(results=outbox, submitted=total, dropped=dropped)

    def _join(self, futures: list[Future[list[RecordRef]]]) -> list[RecordRef]:
        """Wait for every worker, then collect their drop lists.

        A worker that died on an unexpected exception re-raises it here, after
        all of its siblings have finished.
        """
        try:
            wait(futures)
        except KeyboardInterrupt:
            LOGGER.warning("Interrupted, cancelling remaining work")
            self.cancel.set()
            wait(futures)
            raise

        dropped: list[RecordRef] = []
        for future in futures:
            dropped.extend(future.result())
        dropped.sort(key=lambda ref: (ref.collection, ref.number))
        return dropped

    def _work(
        self,
        inbox: ClosableQueue[Record],
        outbox: ClosableQueue[EnrichmentResult],
    ) -> list[RecordRef]:
        dropped: list[RecordRef] = []
        for record in inbox:
            if self.cancel.is_set():
                dropped.append(record.ref)
                continue
            try:
                enriched = self.enrich(record)
            except EnrichmentError as exc:
                LOGGER.warning("Dropping %s#%s: %s", record.collection, record.number, exc)
                dropped.append(record.ref)
                continue
            outbox.put(EnrichmentResult(record=enriched))
        return dropped
