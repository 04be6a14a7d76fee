"""Quadtree helpers: base cover, children and per-tile export extents."""

from __future__ import annotations

from typing import List

import mercantile
from mercantile import Tile

from imageservice_mbtiles.core.models import WEB_MERCATOR, WGS84, BoundingBox, SpatialReference


def base_cover(extent: BoundingBox, zoom: int) -> List[Tile]:
    """Return the tiles at ``zoom`` intersecting a WGS84 extent."""

    if extent.wkid != WGS84:
        raise ValueError(f"base cover needs a WGS84 extent, got wkid {extent.wkid}")
    west, south, east, north = extent.as_bounds()
    return sorted(set(mercantile.tiles(west, south, east, north, zooms=[zoom])))


def children(tile: Tile) -> List[Tile]:
    return mercantile.children(tile)


def tile_extent(tile: Tile, *, wkid: int = WGS84) -> BoundingBox:
    """Bounds of ``tile`` as an export request bbox in WGS84 or Web Mercator."""

    if wkid == WGS84:
        west, south, east, north = mercantile.bounds(tile)
    elif wkid == WEB_MERCATOR:
        west, south, east, north = mercantile.xy_bounds(tile)
    else:
        raise ValueError(f"unsupported bbox spatial reference {wkid}")
    return BoundingBox(
        xmin=west,
        ymin=south,
        xmax=east,
        ymax=north,
        spatial_reference=SpatialReference(wkid),
    )
