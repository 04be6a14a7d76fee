"""Tile addressing helpers for imageservice_mbtiles."""

from .cover import base_cover, children, tile_extent

__all__ = ["base_cover", "children", "tile_extent"]
