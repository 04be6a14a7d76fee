"""Core data models for imageservice_mbtiles."""

from .models import (
    BoundingBox,
    ExportConfig,
    ExportImageInput,
    ExportImageOutput,
    FetchResult,
    FetchTask,
    PyramidConfig,
    RetryConfig,
    ServiceDetails,
    SpatialReference,
    TileRecord,
    flip_y,
)

__all__ = [
    "BoundingBox",
    "ExportConfig",
    "ExportImageInput",
    "ExportImageOutput",
    "FetchResult",
    "FetchTask",
    "PyramidConfig",
    "RetryConfig",
    "ServiceDetails",
    "SpatialReference",
    "TileRecord",
    "flip_y",
]
