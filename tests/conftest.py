import math
import threading
from typing import Callable, Dict, Optional

import mercantile
import pytest

from imageservice_mbtiles.acquisition.imageservice import ImageServiceError
from imageservice_mbtiles.core.models import BoundingBox, ExportImageInput, ExportImageOutput

BLANK = b"\x00" * 777


def tile_payload(tile: mercantile.Tile) -> bytes:
    return f"tile-{tile.z}-{tile.x}-{tile.y}".encode("ascii") * 4


class FakeImageService:
    """Deterministic stand-in for an ESRI image service.

    The tile being exported is recovered from the WGS84 bbox of the request,
    and ``payload_for`` decides what bytes that tile renders to. Returning
    ``None`` from it simulates a transport failure.
    """

    def __init__(
        self,
        extent: Optional[BoundingBox] = None,
        payload_for: Callable[[mercantile.Tile], Optional[bytes]] = tile_payload,
    ) -> None:
        self.extent = extent or BoundingBox(-123.0, 45.0, -122.0, 46.0)
        self._payload_for = payload_for
        self._lock = threading.Lock()
        self.exports: Dict[mercantile.Tile, int] = {}

    def resolve_extent(self, *, timeout=None) -> BoundingBox:
        return self.extent

    def export_image(self, request: ExportImageInput, *, timeout=None) -> ExportImageOutput:
        tile = bbox_to_tile(request.bbox)
        with self._lock:
            self.exports[tile] = self.exports.get(tile, 0) + 1
        payload = self._payload_for(tile)
        if payload is None:
            raise ImageServiceError(f"simulated failure for {tile}")
        return ExportImageOutput(extent=request.bbox, href=f"fake://{tile.z}/{tile.x}/{tile.y}", image_bytes=payload)

    def fetch_image(self, output: ExportImageOutput, *, timeout=None) -> bytes:
        return output.image_bytes


def bbox_to_tile(bbox: BoundingBox) -> mercantile.Tile:
    zoom = int(round(math.log2(360.0 / (bbox.xmax - bbox.xmin))))
    center_lon = (bbox.xmin + bbox.xmax) / 2.0
    center_lat = (bbox.ymin + bbox.ymax) / 2.0
    return mercantile.tile(center_lon, center_lat, zoom)


@pytest.fixture()
def fake_service() -> FakeImageService:
    return FakeImageService()


@pytest.fixture()
def service_factory():
    return FakeImageService


@pytest.fixture()
def blank_payload() -> bytes:
    return BLANK


@pytest.fixture()
def payload_for_tile():
    return tile_payload
