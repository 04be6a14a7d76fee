import logging
import threading

import pytest

from imageservice_mbtiles.pipeline.progress import ProgressReporter


def test_report_logs_snapshot(caplog: pytest.LogCaptureFixture) -> None:
    reporter = ProgressReporter(lambda: {"tasks": 7, "results": 2, "outstanding": 9}, interval=1.0)

    with caplog.at_level(logging.INFO, logger="imageservice_mbtiles.pipeline.progress"):
        snapshot = reporter.report()

    assert snapshot == {"tasks": 7, "results": 2, "outstanding": 9}
    assert "tasks:    7 results:    2 outstanding:    9" in caplog.text


def test_reporter_samples_periodically_until_stopped() -> None:
    sampled = threading.Event()
    calls = []

    def sample():  # type: ignore[no-untyped-def]
        calls.append(1)
        sampled.set()
        return {"tasks": 0}

    reporter = ProgressReporter(sample, interval=0.01)
    reporter.start()
    assert sampled.wait(timeout=5)
    reporter.stop()
    assert calls


def test_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ProgressReporter(dict, interval=0)
