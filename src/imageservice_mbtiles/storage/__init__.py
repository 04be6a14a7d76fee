"""Tile persistence for imageservice_mbtiles."""

from .mbtiles import MBTilesStore, TileStoreError, pyramid_metadata

__all__ = ["MBTilesStore", "TileStoreError", "pyramid_metadata"]
