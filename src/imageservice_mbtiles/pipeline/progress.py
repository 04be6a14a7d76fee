"""Periodic queue-depth logging."""

from __future__ import annotations

import threading
from typing import Callable, Dict, Optional

from imageservice_mbtiles.logging import get_logger

LOGGER = get_logger(__name__)


class ProgressReporter:
    """Log a snapshot of pipeline depths every ``interval`` seconds.

    ``sample`` returns the values to report; it is called from the reporter
    thread and must only read thread-safe state such as queue sizes.
    """

    def __init__(self, sample: Callable[[], Dict[str, int]], *, interval: float = 1.0) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._sample = sample
        self._interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name="progress", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()

    def report(self) -> Dict[str, int]:
        snapshot = self._sample()
        LOGGER.info(
            " ".join(f"{key}: {value:4d}" for key, value in snapshot.items()),
            extra=snapshot,
        )
        return snapshot

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            self.report()
