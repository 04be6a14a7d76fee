"""Queues wiring workers and writer, plus outstanding-work completion detection.

The writer feeds the task queue the workers drain, so neither queue ever sees
an obvious last item. Completion is detected by counting work instead: every
submitted task increments :class:`OutstandingWork` and the writer marks it
done only after any children it produced were themselves submitted. When the
count reaches zero no task is queued or in flight, and the task queue closes.
"""

from __future__ import annotations

import queue
import threading
from contextlib import contextmanager
from typing import Callable, Generic, Iterable, Iterator, Optional, TypeVar

from mercantile import Tile

from imageservice_mbtiles.core.models import FetchTask
from imageservice_mbtiles.logging import get_logger

LOGGER = get_logger(__name__)

T = TypeVar("T")

_CLOSED = object()


class QueueClosed(RuntimeError):
    """Raised when submitting to a queue that has been closed."""


class ClosableQueue(Generic[T]):
    """FIFO channel whose consumers stop iterating once it is closed and empty.

    Closing appends a marker behind any queued items; each consumer that meets
    the marker puts it back for its siblings and stops.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    def put(self, item: T) -> None:
        if self._closed:
            raise QueueClosed("queue is closed")
        self._queue.put(item)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._queue.put(_CLOSED)

    def __iter__(self) -> Iterator[T]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                self._queue.put(_CLOSED)
                return
            yield item  # type: ignore[misc]


class OutstandingWork:
    """Thread-safe count of submitted but not fully processed tasks."""

    def __init__(self, on_drained: Optional[Callable[[], None]] = None) -> None:
        self._count = 0
        self._condition = threading.Condition()
        self._on_drained = on_drained

    @property
    def pending(self) -> int:
        with self._condition:
            return self._count

    def add(self, count: int = 1) -> None:
        if count < 0:
            raise ValueError("count must be >= 0")
        with self._condition:
            self._count += count

    def done(self) -> int:
        """Mark one unit finished and return how many remain."""

        with self._condition:
            if self._count == 0:
                raise RuntimeError("done() called more times than add()")
            self._count -= 1
            remaining = self._count
            if remaining == 0:
                self._condition.notify_all()
        if remaining == 0 and self._on_drained is not None:
            self._on_drained()
        return remaining

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the count reaches zero; returns False on timeout."""

        with self._condition:
            return self._condition.wait_for(lambda: self._count == 0, timeout=timeout)


class TaskQueue:
    """Unbounded task queue that closes itself once all submitted work is done."""

    def __init__(self) -> None:
        self._queue: ClosableQueue[FetchTask] = ClosableQueue()
        self.outstanding = OutstandingWork(on_drained=self.close)
        self._submitted = 0
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._queue.closed

    @property
    def submitted(self) -> int:
        """Number of tasks ever enqueued."""

        with self._lock:
            return self._submitted

    def qsize(self) -> int:
        return self._queue.qsize()

    def submit(self, tiles: Iterable[Tile]) -> int:
        """Enqueue a fetch task per tile, counting each before it becomes visible."""

        submitted = 0
        for tile in tiles:
            if self._queue.closed:
                raise QueueClosed(f"cannot submit {tile}: task queue is closed")
            self.outstanding.add()
            self._queue.put(FetchTask(tile))
            submitted += 1
        with self._lock:
            self._submitted += submitted
        return submitted

    def complete(self) -> int:
        """Mark one task fully processed; closes the queue at zero."""

        return self.outstanding.done()

    @contextmanager
    def hold(self) -> Iterator[None]:
        """Keep the queue open while seeding, even if workers finish early."""

        self.outstanding.add()
        try:
            yield
        finally:
            self.complete()

    def close(self) -> None:
        if not self._queue.closed:
            LOGGER.debug("closing task queue")
        self._queue.close()

    def __iter__(self) -> Iterator[FetchTask]:
        return iter(self._queue)
