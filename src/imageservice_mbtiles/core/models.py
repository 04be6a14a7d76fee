"""Dataclasses describing core pyramid-building entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from mercantile import Tile

WGS84 = 4326
WEB_MERCATOR = 3857
MAX_SUPPORTED_ZOOM = 30


@dataclass(frozen=True)
class SpatialReference:
    """Well-known ID pair reported by the remote service."""

    wkid: int
    latest_wkid: Optional[int] = None

    @classmethod
    def from_json(cls, payload: Optional[Mapping[str, Any]]) -> "SpatialReference":
        payload = payload or {}
        wkid = payload.get("wkid")
        latest = payload.get("latestWkid")
        if wkid is None and latest is None:
            raise ValueError("spatialReference must carry wkid or latestWkid")
        return cls(
            wkid=int(wkid if wkid is not None else latest),
            latest_wkid=int(latest) if latest is not None else None,
        )


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned extent in a given spatial reference."""

    xmin: float
    ymin: float
    xmax: float
    ymax: float
    spatial_reference: SpatialReference = SpatialReference(WGS84)

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "BoundingBox":
        try:
            return cls(
                xmin=float(payload["xmin"]),
                ymin=float(payload["ymin"]),
                xmax=float(payload["xmax"]),
                ymax=float(payload["ymax"]),
                spatial_reference=SpatialReference.from_json(payload.get("spatialReference")),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"malformed extent: {payload!r}") from exc

    @property
    def wkid(self) -> int:
        return self.spatial_reference.wkid

    def as_param(self) -> str:
        return f"{self.xmin:f},{self.ymin:f},{self.xmax:f},{self.ymax:f}"

    def as_bounds(self) -> Tuple[float, float, float, float]:
        return (self.xmin, self.ymin, self.xmax, self.ymax)


@dataclass(frozen=True)
class ServiceDetails:
    """Subset of the service metadata document used to seed a pyramid."""

    extent: Optional[BoundingBox]
    initial_extent: Optional[BoundingBox]
    full_extent: BoundingBox

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "ServiceDetails":
        if "fullExtent" not in payload:
            raise ValueError("service metadata is missing fullExtent")
        return cls(
            extent=_optional_extent(payload.get("extent")),
            initial_extent=_optional_extent(payload.get("initialExtent")),
            full_extent=BoundingBox.from_json(payload["fullExtent"]),
        )


def _optional_extent(payload: Optional[Mapping[str, Any]]) -> Optional[BoundingBox]:
    if not payload:
        return None
    return BoundingBox.from_json(payload)


@dataclass(frozen=True)
class ExportImageInput:
    """Parameters of a single ``exportImage`` request."""

    bbox: BoundingBox
    image_sr: int
    width: int
    height: int
    format: str
    pixel_type: str
    no_data: Tuple[int, ...] = ()

    def to_params(self) -> Dict[str, str]:
        params = {
            "f": "pjson",
            "bbox": self.bbox.as_param(),
            "bboxSR": str(self.bbox.wkid),
            "size": f"{self.width},{self.height}",
            "imageSR": str(self.image_sr),
            "format": self.format,
            "pixelType": self.pixel_type,
        }
        if self.no_data:
            params["noData"] = ",".join(str(value) for value in self.no_data)
        return params


@dataclass(frozen=True)
class ExportImageOutput:
    """Result of ``exportImage``: either a link to the image or its bytes."""

    extent: Optional[BoundingBox]
    href: Optional[str] = None
    image_bytes: Optional[bytes] = None
    width: Optional[int] = None
    height: Optional[int] = None


@dataclass(frozen=True)
class FetchTask:
    """A tile waiting to be fetched by a worker."""

    tile: Tile


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one fetch task: payload bytes or a failure description."""

    tile: Tile
    payload: Optional[bytes] = None
    error: Optional[str] = None
    attempts: int = 1

    @property
    def failed(self) -> bool:
        return self.payload is None


@dataclass(frozen=True)
class TileRecord:
    """A row of the ``tiles`` table; ``row`` uses the TMS convention."""

    zoom: int
    column: int
    row: int
    payload: bytes

    @classmethod
    def from_tile(cls, tile: Tile, payload: bytes) -> "TileRecord":
        return cls(zoom=tile.z, column=tile.x, row=flip_y(tile.z, tile.y), payload=payload)


def flip_y(zoom: int, y: int) -> int:
    """Convert between XYZ and TMS row numbering; the mapping is its own inverse."""

    if not 0 <= y < (1 << zoom):
        raise ValueError(f"row {y} out of range for zoom {zoom}")
    return (1 << zoom) - 1 - y


@dataclass
class ExportConfig:
    """Options forwarded to every per-tile ``exportImage`` request."""

    bbox_sr: int = WGS84
    image_sr: int = WEB_MERCATOR
    tile_size: int = 256
    format: str = "png"
    pixel_type: str = "U8"
    no_data: Tuple[int, ...] = (255,)
    timeout_seconds: float = 15.0


@dataclass
class RetryConfig:
    """Bounded retry with linear backoff for recoverable fetch failures."""

    attempts: int = 3
    backoff_seconds: float = 1.0

    def delay(self, attempt: int) -> float:
        return self.backoff_seconds * attempt


@dataclass
class PyramidConfig:
    """Configuration options controlling a pyramid build."""

    name: Optional[str] = None
    min_zoom: int = 12
    max_zoom: int = 20
    concurrency: int = 32
    batch_size: int = 1000
    result_queue_size: int = 1000
    progress_interval_seconds: float = 1.0
    blank_sizes: Tuple[int, ...] = (776, 777)
    export: ExportConfig = field(default_factory=ExportConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)

    def validate(self) -> None:
        """Raise ``ValueError`` when option combinations cannot produce a pyramid."""

        if self.min_zoom < 0:
            raise ValueError("min_zoom must be >= 0")
        if self.max_zoom < self.min_zoom:
            raise ValueError("max_zoom must be >= min_zoom")
        if self.max_zoom > MAX_SUPPORTED_ZOOM:
            raise ValueError(f"max_zoom must be <= {MAX_SUPPORTED_ZOOM}")
        if self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.result_queue_size < 1:
            raise ValueError("result_queue_size must be >= 1")
        if self.retry.attempts < 1:
            raise ValueError("retry.attempts must be >= 1")
        if self.export.tile_size < 1:
            raise ValueError("export.tile_size must be >= 1")
        if self.export.bbox_sr not in (WGS84, WEB_MERCATOR):
            raise ValueError("export.bbox_sr must be 4326 or 3857")
        if self.export.timeout_seconds <= 0:
            raise ValueError("export.timeout_seconds must be positive")
        if self.progress_interval_seconds <= 0:
            raise ValueError("progress_interval_seconds must be positive")

    def resolved_name(self, output_path: Path) -> str:
        return self.name or output_path.stem
