from pathlib import Path

import mercantile
import pytest

from imageservice_mbtiles.core.models import FetchResult, flip_y
from imageservice_mbtiles.pipeline.blank import BlankTileClassifier
from imageservice_mbtiles.pipeline.queues import ClosableQueue, TaskQueue
from imageservice_mbtiles.pipeline.writer import TileStoreWriter
from imageservice_mbtiles.storage.mbtiles import MBTilesStore, TileStoreError

BLANK = b"\x00" * 777


@pytest.fixture()
def store(tmp_path: Path):
    mbtiles = MBTilesStore.open(tmp_path / "writer.mbtiles")
    yield mbtiles
    mbtiles.close()


def run_writer(store: MBTilesStore, results, *, max_zoom: int, batch_size: int = 1000, on_error=None):
    """Feed ``results`` through a writer synchronously; return (writer, tasks)."""

    tasks = TaskQueue()
    channel: ClosableQueue[FetchResult] = ClosableQueue()
    with tasks.hold():
        tasks.submit(result.tile for result in results)
    taken = iter(tasks)
    for _ in results:
        next(taken)
    for result in results:
        channel.put(result)
    channel.close()
    writer = TileStoreWriter(
        store,
        channel,
        tasks,
        max_zoom=max_zoom,
        batch_size=batch_size,
        classifier=BlankTileClassifier(),
        on_error=on_error,
    )
    writer.run()
    return writer, tasks


def queued_tiles(tasks: TaskQueue):
    tasks.close()
    return sorted(task.tile for task in tasks)


def test_persists_with_tms_row_and_schedules_children(store: MBTilesStore) -> None:
    tile = mercantile.Tile(x=2, y=1, z=2)
    writer, tasks = run_writer(store, [FetchResult(tile=tile, payload=b"image")], max_zoom=3)

    assert store.get_tile(2, 2, flip_y(2, 1)) == b"image"
    assert tasks.outstanding.pending == 4
    assert not tasks.closed
    assert queued_tiles(tasks) == sorted(mercantile.children(tile))
    assert writer.stats.persisted == 1


def test_max_zoom_tiles_never_recurse(store: MBTilesStore) -> None:
    tile = mercantile.Tile(x=2, y=1, z=3)
    writer, tasks = run_writer(store, [FetchResult(tile=tile, payload=b"image")], max_zoom=3)

    assert store.count_tiles() == 1
    assert tasks.closed
    assert queued_tiles(tasks) == []


def test_blank_and_failed_tiles_are_dropped_without_children(store: MBTilesStore) -> None:
    results = [
        FetchResult(tile=mercantile.Tile(x=0, y=0, z=1), payload=BLANK),
        FetchResult(tile=mercantile.Tile(x=1, y=0, z=1), error="timeout", attempts=3),
    ]
    writer, tasks = run_writer(store, results, max_zoom=5)

    assert store.count_tiles() == 0
    assert (writer.stats.blank, writer.stats.failed) == (1, 1)
    assert writer.stats.fetch_attempts == 4
    assert tasks.outstanding.pending == 0
    assert tasks.closed
    assert queued_tiles(tasks) == []


def test_commits_in_batches(store: MBTilesStore) -> None:
    tiles = [mercantile.Tile(x=x, y=0, z=3) for x in range(5)]
    writer, _ = run_writer(
        store,
        [FetchResult(tile=tile, payload=b"img") for tile in tiles],
        max_zoom=3,
        batch_size=2,
    )

    # two full batches plus the final partial one
    assert writer.stats.commits == 3
    assert store.count_tiles(zoom=3) == 5
    assert not store.in_transaction


class FailingStore:
    def __init__(self, inner: MBTilesStore) -> None:
        self._inner = inner
        self.rolled_back = False

    def begin(self) -> None:
        self._inner.begin()

    def put(self, record) -> None:  # type: ignore[no-untyped-def]
        raise TileStoreError("disk full")

    def commit(self) -> None:
        self._inner.commit()

    def rollback(self) -> None:
        self.rolled_back = True
        self._inner.rollback()


def test_store_failure_is_recorded_and_remaining_results_discarded(store: MBTilesStore) -> None:
    failing = FailingStore(store)
    errors = []
    results = [FetchResult(tile=mercantile.Tile(x=x, y=0, z=2), payload=b"img") for x in range(3)]

    writer, tasks = run_writer(failing, results, max_zoom=4, on_error=errors.append)  # type: ignore[arg-type]

    assert isinstance(writer.error, TileStoreError)
    assert errors == [writer.error]
    assert failing.rolled_back
    assert writer.stats.discarded == 2
    assert tasks.outstanding.pending == 3
