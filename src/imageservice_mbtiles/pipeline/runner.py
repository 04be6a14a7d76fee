"""Wire extent, workers, writer and progress reporting into one pyramid build."""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Optional

from imageservice_mbtiles.acquisition.base import ImageService
from imageservice_mbtiles.core.models import BoundingBox, FetchResult, PyramidConfig
from imageservice_mbtiles.logging import get_logger
from imageservice_mbtiles.storage.mbtiles import MBTilesStore, TileStoreError, pyramid_metadata
from imageservice_mbtiles.tiling.cover import base_cover

from .blank import BlankTileClassifier
from .progress import ProgressReporter
from .queues import ClosableQueue, QueueClosed, TaskQueue
from .workers import FetchWorkerPool
from .writer import TileStoreWriter

LOGGER = get_logger(__name__)


class PipelineError(RuntimeError):
    """Raised when a pyramid build stops on a fatal storage failure."""


@dataclass
class PipelineSummary:
    """Counters describing a finished run."""

    base_tiles: int = 0
    enqueued: int = 0
    persisted: int = 0
    blank: int = 0
    failed: int = 0
    commits: int = 0
    fetch_attempts: int = 0
    stopped: bool = False

    def as_dict(self) -> Dict[str, object]:
        return asdict(self)


class PyramidPipeline:
    """One run of the fetch/subdivide/write loop.

    Queues, counters and threads belong to a single pipeline instance and are
    not reusable; construct a new pipeline per run.
    """

    def __init__(
        self,
        service: ImageService,
        store: MBTilesStore,
        config: PyramidConfig,
        *,
        classifier: Optional[BlankTileClassifier] = None,
    ) -> None:
        config.validate()
        self._config = config
        self._stop = threading.Event()
        self._tasks = TaskQueue()
        self._results: ClosableQueue[FetchResult] = ClosableQueue(maxsize=config.result_queue_size)
        self._workers = FetchWorkerPool(
            service,
            self._tasks,
            self._results,
            export=config.export,
            retry=config.retry,
            concurrency=config.concurrency,
            stop_event=self._stop,
        )
        self._writer = TileStoreWriter(
            store,
            self._results,
            self._tasks,
            max_zoom=config.max_zoom,
            batch_size=config.batch_size,
            classifier=classifier or BlankTileClassifier(config.blank_sizes),
            on_error=self._abort,
        )
        self._progress = ProgressReporter(self.snapshot, interval=config.progress_interval_seconds)
        self._started = False

    @property
    def outstanding(self) -> int:
        return self._tasks.outstanding.pending

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    @property
    def running(self) -> bool:
        """True while any worker or the writer thread is still alive."""

        return self._workers.alive() > 0 or self._writer.alive()

    def snapshot(self) -> Dict[str, int]:
        return {
            "tasks": self._tasks.qsize(),
            "results": self._results.qsize(),
            "outstanding": self.outstanding,
            "workers": self._workers.alive(),
        }

    def run(self, extent: BoundingBox) -> PipelineSummary:
        """Build the pyramid below ``extent`` and block until it has drained."""

        if self._started:
            raise RuntimeError("pipeline instances run only once")
        self._started = True

        cover = base_cover(extent, self._config.min_zoom)
        LOGGER.info(
            "found %d tiles to fetch at z%d",
            len(cover),
            self._config.min_zoom,
            extra={"max_zoom": self._config.max_zoom},
        )

        self._writer.start()
        self._workers.start()
        self._progress.start()
        try:
            try:
                self._seed(cover)
                self._wait()
            except KeyboardInterrupt:
                self.stop()
                self._wait()
        finally:
            self._progress.stop()

        stats = self._writer.stats
        summary = PipelineSummary(
            base_tiles=len(cover),
            enqueued=self._tasks.submitted,
            persisted=stats.persisted,
            blank=stats.blank,
            failed=stats.failed,
            commits=stats.commits,
            fetch_attempts=stats.fetch_attempts,
            stopped=self.stopping,
        )
        if self._writer.error is not None:
            raise PipelineError(f"Pyramid build aborted: {self._writer.error}") from self._writer.error
        LOGGER.info("pyramid complete", extra=summary.as_dict())
        return summary

    def stop(self) -> None:
        """Stop fetching new tasks; in-flight results still get written."""

        if not self._stop.is_set():
            LOGGER.warning("stopping pipeline; draining in-flight tiles")
        self._stop.set()
        self._tasks.close()

    def _abort(self, exc: TileStoreError) -> None:
        self.stop()

    def _seed(self, cover) -> None:
        with self._tasks.hold():
            try:
                self._tasks.submit(cover)
            except QueueClosed:
                if not self.stopping:
                    raise
        LOGGER.info("finished seeding z%d", self._config.min_zoom)

    def _wait(self) -> None:
        self._workers.join()
        # Workers only exit once the task queue is closed, so nothing else
        # can be produced into the result queue.
        self._results.close()
        self._writer.join()


def build_pyramid(
    service: ImageService,
    output_path: Path,
    config: PyramidConfig,
    *,
    extent: Optional[BoundingBox] = None,
) -> PipelineSummary:
    """Resolve the extent, prepare the MBTiles file and run a pipeline.

    Extent resolution and store initialisation errors propagate unchanged so
    callers can treat them as startup failures.
    """

    config.validate()
    if extent is None:
        extent = service.resolve_extent(timeout=config.export.timeout_seconds)
    with MBTilesStore.open(output_path) as store:
        store.write_metadata(
            pyramid_metadata(
                name=config.resolved_name(Path(output_path)),
                tile_format=config.export.format,
                min_zoom=config.min_zoom,
                max_zoom=config.max_zoom,
                bounds=extent.as_bounds(),
            )
        )
        pipeline = PyramidPipeline(service, store, config)
        return pipeline.run(extent)
