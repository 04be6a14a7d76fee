"""Configuration loading utilities for imageservice_mbtiles."""

from .loader import ConfigLoader, load_config

__all__ = ["ConfigLoader", "load_config"]
