"""Fixed-size pool of threads turning fetch tasks into fetch results."""

from __future__ import annotations

import threading
from typing import List, Optional

from mercantile import Tile

from imageservice_mbtiles.acquisition.base import ImageService
from imageservice_mbtiles.acquisition.imageservice import (
    Deadline,
    ImageServiceError,
    ImageServiceResponseError,
)
from imageservice_mbtiles.core.models import ExportConfig, ExportImageInput, FetchResult, RetryConfig
from imageservice_mbtiles.logging import get_logger
from imageservice_mbtiles.tiling.cover import tile_extent

from .queues import ClosableQueue, TaskQueue

LOGGER = get_logger(__name__)


class FetchWorkerPool:
    """Run ``concurrency`` workers draining ``tasks`` into ``results``.

    Every task taken yields exactly one result, failed or not, unless the
    pool is stopping, in which case remaining tasks are discarded unfetched.
    """

    def __init__(
        self,
        service: ImageService,
        tasks: TaskQueue,
        results: ClosableQueue[FetchResult],
        *,
        export: ExportConfig,
        retry: RetryConfig,
        concurrency: int,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._service = service
        self._tasks = tasks
        self._results = results
        self._export = export
        self._retry = retry
        self._concurrency = concurrency
        self._stop = stop_event or threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def start(self) -> None:
        if self._threads:
            raise RuntimeError("worker pool already started")
        for index in range(self._concurrency):
            thread = threading.Thread(
                target=self._run,
                name=f"fetch-worker-{index}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
        LOGGER.info("started fetch workers", extra={"concurrency": self._concurrency})

    def join(self) -> None:
        for thread in self._threads:
            thread.join()

    def alive(self) -> int:
        return sum(1 for thread in self._threads if thread.is_alive())

    def _run(self) -> None:
        for task in self._tasks:
            if self._stop.is_set():
                continue
            try:
                result = self.fetch(task.tile)
            except Exception as exc:
                # Anything unexpected still has to produce a result, or the
                # outstanding-work count would never reach zero.
                LOGGER.exception(
                    "unexpected error fetching tile",
                    extra={"z": task.tile.z, "x": task.tile.x, "y": task.tile.y},
                )
                result = FetchResult(tile=task.tile, error=f"{type(exc).__name__}: {exc}")
            self._results.put(result)
        LOGGER.debug("task queue closed; worker exiting")

    def fetch(self, tile: Tile) -> FetchResult:
        """Fetch one tile, retrying recoverable failures with linear backoff."""

        attempts = self._retry.attempts
        last_error: Optional[ImageServiceError] = None
        for attempt in range(1, attempts + 1):
            try:
                payload = self._fetch_once(tile)
                return FetchResult(tile=tile, payload=payload, attempts=attempt)
            except ImageServiceError as exc:
                last_error = exc
                LOGGER.debug(
                    "fetch attempt %d/%d failed for %d/%d/%d: %s",
                    attempt,
                    attempts,
                    tile.z,
                    tile.x,
                    tile.y,
                    exc,
                )
                if attempt < attempts and self._stop.wait(self._retry.delay(attempt)):
                    break
        LOGGER.warning(
            "giving up on tile %d/%d/%d after %d attempts: %s",
            tile.z,
            tile.x,
            tile.y,
            attempt,
            last_error,
            extra={"z": tile.z, "x": tile.x, "y": tile.y},
        )
        return FetchResult(tile=tile, error=str(last_error), attempts=attempt)

    def _fetch_once(self, tile: Tile) -> bytes:
        deadline = Deadline(self._export.timeout_seconds)
        request = ExportImageInput(
            bbox=tile_extent(tile, wkid=self._export.bbox_sr),
            image_sr=self._export.image_sr,
            width=self._export.tile_size,
            height=self._export.tile_size,
            format=self._export.format,
            pixel_type=self._export.pixel_type,
            no_data=self._export.no_data,
        )
        output = self._service.export_image(request, timeout=deadline.remaining())
        payload = self._service.fetch_image(output, timeout=deadline.remaining())
        if not payload:
            raise ImageServiceResponseError("service returned an empty image")
        return payload
