"""Single consumer persisting fetch results and scheduling child tiles."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional

from imageservice_mbtiles.core.models import FetchResult, TileRecord
from imageservice_mbtiles.logging import get_logger
from imageservice_mbtiles.storage.mbtiles import MBTilesStore, TileStoreError
from imageservice_mbtiles.tiling.cover import children

from .blank import BlankTileClassifier
from .queues import ClosableQueue, QueueClosed, TaskQueue

LOGGER = get_logger(__name__)


@dataclass
class WriterStats:
    """Counters kept by the writer thread; read them after ``join``."""

    persisted: int = 0
    blank: int = 0
    failed: int = 0
    discarded: int = 0
    commits: int = 0
    fetch_attempts: int = 0


class TileStoreWriter:
    """Drain ``results`` into ``store`` and feed children back into ``tasks``.

    The writer is the only thread touching the store and the only one that
    decides to recurse, so neither needs locking. Per result it:

    1. drops failed and blank tiles,
    2. upserts the tile under its TMS row, committing every ``batch_size``,
    3. submits the four children unless the tile sits at ``max_zoom``,
    4. marks the task complete, which may close the task queue.

    A :class:`TileStoreError` rolls back the open batch, is kept on
    :attr:`error`, and ``on_error`` is invoked so the pipeline can stop; the
    writer keeps draining ``results`` without persisting so workers never block.
    """

    def __init__(
        self,
        store: MBTilesStore,
        results: ClosableQueue[FetchResult],
        tasks: TaskQueue,
        *,
        max_zoom: int,
        batch_size: int = 1000,
        classifier: Optional[BlankTileClassifier] = None,
        on_error=None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._store = store
        self._results = results
        self._tasks = tasks
        self._max_zoom = max_zoom
        self._batch_size = batch_size
        self._classifier = classifier or BlankTileClassifier()
        self._on_error = on_error
        self._pending = 0
        self._thread: Optional[threading.Thread] = None
        self.stats = WriterStats()
        self.error: Optional[TileStoreError] = None

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("writer already started")
        self._thread = threading.Thread(target=self.run, name="tile-writer", daemon=True)
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run(self) -> None:
        """Consume results until the result queue is closed and empty."""

        try:
            self._store.begin()
        except TileStoreError as exc:
            self._fail(exc)
        for result in self._results:
            if self.error is not None:
                self.stats.discarded += 1
                continue
            try:
                self.handle(result)
            except TileStoreError as exc:
                self._fail(exc)
                continue
            self._tasks.complete()
        if self.error is None:
            try:
                self._commit(final=True)
            except TileStoreError as exc:
                self._fail(exc)
        LOGGER.debug("result queue closed; writer exiting")

    def handle(self, result: FetchResult) -> None:
        tile = result.tile
        self.stats.fetch_attempts += result.attempts
        if result.failed:
            self.stats.failed += 1
            LOGGER.warning(
                "dropping tile %d/%d/%d: %s",
                tile.z,
                tile.x,
                tile.y,
                result.error,
                extra={"z": tile.z, "x": tile.x, "y": tile.y},
            )
            return
        if self._classifier.is_blank(result.payload):
            self.stats.blank += 1
            return

        self._store.put(TileRecord.from_tile(tile, result.payload))
        self.stats.persisted += 1
        self._pending += 1
        if self._pending >= self._batch_size:
            self._commit()
            self._store.begin()

        if tile.z + 1 > self._max_zoom:
            return
        try:
            self._tasks.submit(children(tile))
        except QueueClosed:
            # Only happens once the pipeline is stopping.
            LOGGER.debug("not scheduling children of %s; task queue closed", tile)

    def _commit(self, *, final: bool = False) -> None:
        self._store.commit()
        if self._pending:
            self.stats.commits += 1
            LOGGER.info(
                "committed %d tiles",
                self._pending,
                extra={"persisted": self.stats.persisted, "final": final},
            )
        self._pending = 0

    def _fail(self, exc: TileStoreError) -> None:
        LOGGER.error("tile store failure; stopping pipeline: %s", exc)
        self.error = exc
        self._store.rollback()
        self._pending = 0
        if self._on_error is not None:
            self._on_error(exc)
