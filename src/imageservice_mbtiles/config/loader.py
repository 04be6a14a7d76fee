"""Configuration management with YAML and JSON support."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from imageservice_mbtiles.core.models import ExportConfig, PyramidConfig, RetryConfig

_INT_KEYS = ("min_zoom", "max_zoom", "concurrency", "batch_size", "result_queue_size")


class ConfigLoader:
    """Load pyramid configuration files in YAML or JSON format."""

    def __init__(self, base_dir: Optional[Path] = None) -> None:
        self._base_dir = base_dir or Path.cwd()

    def load(self, path: Path | str) -> PyramidConfig:
        """Parse a configuration file and return a validated dataclass."""

        config_path = self._resolve_path(Path(path))
        payload = self._load_payload(config_path)
        if not isinstance(payload, dict):
            raise ValueError("configuration root must be a mapping")
        config = self._build_config(payload)
        config.validate()
        return config

    def _resolve_path(self, path: Path) -> Path:
        if path.is_absolute():
            return path
        return (self._base_dir / path).resolve()

    def _load_payload(self, path: Path) -> Any:
        suffix = path.suffix.lower()
        if suffix in {".yaml", ".yml"}:
            with path.open("r", encoding="utf-8") as handle:
                return yaml.safe_load(handle) or {}
        if suffix == ".json":
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle) or {}
        raise ValueError(f"Unsupported configuration format: {suffix}")

    def _build_config(self, payload: Dict[str, Any]) -> PyramidConfig:
        data = dict(payload)

        export_payload = data.pop("export", None) or {}
        if not isinstance(export_payload, dict):
            raise ValueError("export section must be a mapping")
        export_data = dict(export_payload)
        if "no_data" in export_data:
            export_data["no_data"] = tuple(int(value) for value in export_data.get("no_data") or [])
        for key in ("bbox_sr", "image_sr", "tile_size"):
            if key in export_data and export_data[key] is not None:
                export_data[key] = int(export_data[key])
        if export_data.get("timeout_seconds") is not None:
            export_data["timeout_seconds"] = float(export_data["timeout_seconds"])
        try:
            export = ExportConfig(**export_data)
        except TypeError as exc:
            raise ValueError(f"Unknown export option: {exc}") from exc

        retry_payload = data.pop("retry", None) or {}
        if not isinstance(retry_payload, dict):
            raise ValueError("retry section must be a mapping")
        retry_data = dict(retry_payload)
        if retry_data.get("attempts") is not None:
            retry_data["attempts"] = int(retry_data["attempts"])
        if retry_data.get("backoff_seconds") is not None:
            retry_data["backoff_seconds"] = float(retry_data["backoff_seconds"])
        try:
            retry = RetryConfig(**retry_data)
        except TypeError as exc:
            raise ValueError(f"Unknown retry option: {exc}") from exc

        for key in _INT_KEYS:
            if key in data and data[key] is not None:
                data[key] = int(data[key])
        if data.get("progress_interval_seconds") is not None:
            data["progress_interval_seconds"] = float(data["progress_interval_seconds"])
        if "blank_sizes" in data:
            sizes = data.get("blank_sizes") or []
            if not isinstance(sizes, (list, tuple)):
                raise ValueError("blank_sizes must be a list of byte lengths")
            data["blank_sizes"] = tuple(int(value) for value in sizes)
        try:
            return PyramidConfig(export=export, retry=retry, **data)
        except TypeError as exc:
            raise ValueError(f"Unknown configuration option: {exc}") from exc


def load_config(path: Path | str, *, base_dir: Optional[Path] = None) -> PyramidConfig:
    """Convenience wrapper around :class:`ConfigLoader`."""

    loader = ConfigLoader(base_dir=base_dir)
    return loader.load(path)
