"""MBTiles container backed by SQLite."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from imageservice_mbtiles.core.models import TileRecord
from imageservice_mbtiles.logging import get_logger

LOGGER = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS tiles (
    zoom_level INTEGER NOT NULL,
    tile_column INTEGER NOT NULL,
    tile_row INTEGER NOT NULL,
    tile_data BLOB NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS tiles_index ON tiles (zoom_level, tile_column, tile_row);
CREATE TABLE IF NOT EXISTS metadata (
    name TEXT NOT NULL,
    value TEXT
);
CREATE UNIQUE INDEX IF NOT EXISTS metadata_index ON metadata (name);
"""

UPSERT_TILE = (
    "INSERT OR REPLACE INTO tiles (zoom_level, tile_column, tile_row, tile_data) "
    "VALUES (?, ?, ?, ?)"
)


class TileStoreError(RuntimeError):
    """Raised when the output container cannot be opened or written."""


def pyramid_metadata(
    *,
    name: str,
    tile_format: str,
    min_zoom: int,
    max_zoom: int,
    bounds: Optional[Tuple[float, float, float, float]] = None,
) -> Dict[str, str]:
    """Return the MBTiles metadata rows describing a TMS pyramid."""

    metadata = {
        "name": name,
        "format": _mbtiles_format(tile_format),
        "minzoom": str(min_zoom),
        "maxzoom": str(max_zoom),
        "scheme": "tms",
    }
    if bounds is not None:
        metadata["bounds"] = ",".join(f"{value:.6f}" for value in bounds)
    return metadata


def _mbtiles_format(export_format: str) -> str:
    # exportImage knows png8/png24/png32 and jpg; MBTiles only png and jpg
    normalized = export_format.lower()
    if normalized.startswith("png"):
        return "png"
    if normalized in {"jpg", "jpeg"}:
        return "jpg"
    return normalized


class MBTilesStore:
    """Single-writer access to an MBTiles file.

    Transactions are explicit: callers ``begin`` a batch, ``put`` records and
    ``commit``. A failed batch is rolled back without touching earlier commits.
    """

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._conn = connection
        self._closed = False

    @classmethod
    def open(cls, path: Path | str) -> "MBTilesStore":
        """Open or create ``path`` and make sure the MBTiles schema exists."""

        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Writes happen on the writer thread, not the thread that opened it.
            connection = sqlite3.connect(str(path), isolation_level=None, check_same_thread=False)
            connection.execute("PRAGMA journal_mode=MEMORY")
            connection.execute("PRAGMA synchronous=OFF")
            connection.executescript(SCHEMA)
        except (OSError, sqlite3.Error) as exc:
            raise TileStoreError(f"Unable to initialise {path}: {exc}") from exc
        LOGGER.info("opened tile store", extra={"path": str(path)})
        return cls(connection)

    @property
    def in_transaction(self) -> bool:
        return self._conn.in_transaction

    def write_metadata(self, metadata: Mapping[str, object]) -> None:
        rows = [(str(name), str(value)) for name, value in metadata.items()]
        try:
            self._conn.execute("BEGIN")
            self._conn.executemany(
                "INSERT OR REPLACE INTO metadata (name, value) VALUES (?, ?)", rows
            )
            self._conn.execute("COMMIT")
        except sqlite3.Error as exc:
            self.rollback()
            raise TileStoreError(f"Unable to write metadata: {exc}") from exc

    def read_metadata(self) -> Dict[str, str]:
        cursor = self._conn.execute("SELECT name, value FROM metadata")
        return {name: value for name, value in cursor.fetchall()}

    def begin(self) -> None:
        try:
            self._conn.execute("BEGIN")
        except sqlite3.Error as exc:
            raise TileStoreError(f"Unable to open transaction: {exc}") from exc

    def put(self, record: TileRecord) -> None:
        try:
            self._conn.execute(
                UPSERT_TILE,
                (record.zoom, record.column, record.row, sqlite3.Binary(record.payload)),
            )
        except sqlite3.Error as exc:
            raise TileStoreError(
                f"Unable to write tile {record.zoom}/{record.column}/{record.row}: {exc}"
            ) from exc

    def commit(self) -> None:
        try:
            if not self._conn.in_transaction:
                return
            self._conn.execute("COMMIT")
        except sqlite3.Error as exc:
            raise TileStoreError(f"Unable to commit tiles: {exc}") from exc

    def rollback(self) -> None:
        try:
            if not self._conn.in_transaction:
                return
            self._conn.execute("ROLLBACK")
        except sqlite3.Error as exc:
            LOGGER.warning("rollback failed: %s", exc)

    def get_tile(self, zoom: int, column: int, row: int) -> Optional[bytes]:
        cursor = self._conn.execute(
            "SELECT tile_data FROM tiles WHERE zoom_level = ? AND tile_column = ? AND tile_row = ?",
            (zoom, column, row),
        )
        found = cursor.fetchone()
        return bytes(found[0]) if found else None

    def count_tiles(self, zoom: Optional[int] = None) -> int:
        if zoom is None:
            cursor = self._conn.execute("SELECT COUNT(*) FROM tiles")
        else:
            cursor = self._conn.execute("SELECT COUNT(*) FROM tiles WHERE zoom_level = ?", (zoom,))
        return int(cursor.fetchone()[0])

    def tile_keys(self) -> List[Tuple[int, int, int]]:
        return list(self.iter_keys())

    def iter_keys(self) -> Iterator[Tuple[int, int, int]]:
        cursor = self._conn.execute(
            "SELECT zoom_level, tile_column, tile_row FROM tiles "
            "ORDER BY zoom_level, tile_column, tile_row"
        )
        for zoom, column, row in cursor:
            yield int(zoom), int(column), int(row)

    def close(self) -> None:
        if self._closed:
            return
        try:
            self.commit()
        finally:
            self._conn.close()
            self._closed = True

    def __enter__(self) -> "MBTilesStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.rollback()
        self.close()
