from pathlib import Path

import mercantile
import pytest

from imageservice_mbtiles.core.models import TileRecord, flip_y
from imageservice_mbtiles.storage.mbtiles import MBTilesStore, TileStoreError, pyramid_metadata


@pytest.fixture()
def store(tmp_path: Path):
    mbtiles = MBTilesStore.open(tmp_path / "out.mbtiles")
    yield mbtiles
    mbtiles.close()


def test_open_creates_schema_and_metadata(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "pyramid.mbtiles"
    with MBTilesStore.open(path) as store:
        store.write_metadata(
            pyramid_metadata(name="kamloops", tile_format="png", min_zoom=12, max_zoom=20)
        )

    with MBTilesStore.open(path) as reopened:
        metadata = reopened.read_metadata()
    assert metadata == {
        "name": "kamloops",
        "format": "png",
        "minzoom": "12",
        "maxzoom": "20",
        "scheme": "tms",
    }


def test_metadata_rewrite_replaces_values(store: MBTilesStore) -> None:
    store.write_metadata({"name": "first"})
    store.write_metadata({"name": "second"})
    assert store.read_metadata() == {"name": "second"}


def test_pyramid_metadata_formats_bounds_and_png_variants() -> None:
    metadata = pyramid_metadata(
        name="x",
        tile_format="PNG32",
        min_zoom=0,
        max_zoom=3,
        bounds=(-123.0, 45.0, -122.5, 45.5),
    )
    assert metadata["format"] == "png"
    assert metadata["bounds"] == "-123.000000,45.000000,-122.500000,45.500000"


def test_put_is_an_upsert(store: MBTilesStore) -> None:
    store.begin()
    store.put(TileRecord(zoom=3, column=1, row=2, payload=b"old"))
    store.put(TileRecord(zoom=3, column=1, row=2, payload=b"new"))
    store.commit()

    assert store.count_tiles() == 1
    assert store.get_tile(3, 1, 2) == b"new"


def test_rollback_only_discards_open_transaction(store: MBTilesStore) -> None:
    store.begin()
    store.put(TileRecord(zoom=1, column=0, row=0, payload=b"kept"))
    store.commit()

    store.begin()
    store.put(TileRecord(zoom=1, column=1, row=0, payload=b"lost"))
    store.rollback()

    assert store.tile_keys() == [(1, 0, 0)]


def test_record_from_tile_uses_tms_row() -> None:
    record = TileRecord.from_tile(mercantile.Tile(x=5, y=1, z=3), b"data")
    assert (record.zoom, record.column, record.row) == (3, 5, 6)


@pytest.mark.parametrize("zoom", [0, 1, 5, 12, 20])
def test_flip_y_is_its_own_inverse(zoom: int) -> None:
    size = 1 << zoom
    for y in {0, size // 3, size // 2, size - 1}:
        row = flip_y(zoom, y)
        assert 0 <= row < size
        assert flip_y(zoom, row) == y


def test_flip_y_rejects_rows_outside_zoom() -> None:
    with pytest.raises(ValueError):
        flip_y(2, 4)


def test_put_on_closed_store_raises_tile_store_error(tmp_path: Path) -> None:
    store = MBTilesStore.open(tmp_path / "closed.mbtiles")
    store.close()
    with pytest.raises(TileStoreError):
        store.put(TileRecord(zoom=0, column=0, row=0, payload=b"x"))


def test_open_fails_for_directory_path(tmp_path: Path) -> None:
    with pytest.raises(TileStoreError):
        MBTilesStore.open(tmp_path)


def test_rollback_after_close_is_quiet_and_commit_raises(tmp_path: Path) -> None:
    store = MBTilesStore.open(tmp_path / "closed.mbtiles")
    store.close()

    store.rollback()
    with pytest.raises(TileStoreError):
        store.commit()
