"""Build MBTiles pyramids from ESRI image and map services."""

from __future__ import annotations

import importlib
from typing import Any

__all__ = [
    "BlankTileClassifier",
    "BoundingBox",
    "ImageServiceClient",
    "MBTilesStore",
    "PipelineSummary",
    "PyramidConfig",
    "PyramidPipeline",
    "build_pyramid",
    "load_config",
]

_MODULE_MAP = {
    "BlankTileClassifier": ("imageservice_mbtiles.pipeline", "BlankTileClassifier"),
    "BoundingBox": ("imageservice_mbtiles.core", "BoundingBox"),
    "ImageServiceClient": ("imageservice_mbtiles.acquisition", "ImageServiceClient"),
    "MBTilesStore": ("imageservice_mbtiles.storage", "MBTilesStore"),
    "PipelineSummary": ("imageservice_mbtiles.pipeline", "PipelineSummary"),
    "PyramidConfig": ("imageservice_mbtiles.core", "PyramidConfig"),
    "PyramidPipeline": ("imageservice_mbtiles.pipeline", "PyramidPipeline"),
    "build_pyramid": ("imageservice_mbtiles.pipeline", "build_pyramid"),
    "load_config": ("imageservice_mbtiles.config", "load_config"),
}


def __getattr__(name: str) -> Any:
    if name not in _MODULE_MAP:
        raise AttributeError(f"module 'imageservice_mbtiles' has no attribute '{name}'")
    module_name, attr = _MODULE_MAP[name]
    module = importlib.import_module(module_name)
    return getattr(module, attr)
