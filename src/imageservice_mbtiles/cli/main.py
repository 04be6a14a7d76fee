"""CLI entry point for imageservice_mbtiles."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Iterable

from imageservice_mbtiles.acquisition import ImageServiceClient, ImageServiceError
from imageservice_mbtiles.config import load_config
from imageservice_mbtiles.core.models import PyramidConfig
from imageservice_mbtiles.logging import configure_logging, get_logger
from imageservice_mbtiles.pipeline import PipelineError, build_pyramid
from imageservice_mbtiles.storage import TileStoreError

LOGGER = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Build an MBTiles pyramid from an ESRI ImageServer or MapServer endpoint",
    )
    parser.add_argument(
        "--endpoint",
        required=True,
        help="ESRI REST service endpoint ending in /MapServer or /ImageServer",
    )
    parser.add_argument("--output", type=Path, required=True, help="Path to the output MBTiles file")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a pyramid configuration file (YAML or JSON)",
    )
    parser.add_argument("--min-zoom", type=int, default=None, help="Override minimum zoom level")
    parser.add_argument("--max-zoom", type=int, default=None, help="Override maximum zoom level")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Number of parallel fetch workers",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Tiles written per transaction",
    )
    parser.add_argument("--name", default=None, help="Tileset name stored in MBTiles metadata")
    parser.add_argument("--log-json", action="store_true", help="Emit logs in JSON format")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file")
    return parser


def main(argv: Iterable[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    if not args.endpoint.strip():
        parser.error("--endpoint must not be empty")

    configure_logging(level=args.log_level, json_logs=args.log_json, log_file=args.log_file)

    try:
        config = _resolve_config(args)
    except (OSError, ValueError) as exc:
        LOGGER.error("Invalid configuration: %s", exc)
        return EXIT_FAILURE

    client = ImageServiceClient(args.endpoint, timeout=config.export.timeout_seconds)
    try:
        extent = client.resolve_extent()
    except ImageServiceError as exc:
        LOGGER.error("Couldn't get details for endpoint %s: %s", args.endpoint, exc)
        client.close()
        return EXIT_FAILURE

    try:
        summary = build_pyramid(client, args.output, config, extent=extent)
    except TileStoreError as exc:
        LOGGER.error("Couldn't initialise output %s: %s", args.output, exc)
        return EXIT_FAILURE
    except ValueError as exc:
        LOGGER.error("Couldn't cover extent of %s: %s", args.endpoint, exc)
        return EXIT_FAILURE
    except PipelineError as exc:
        LOGGER.error("%s", exc)
        return EXIT_FAILURE
    finally:
        client.close()

    if summary.stopped:
        LOGGER.warning("pyramid build interrupted", extra=summary.as_dict())
        return EXIT_INTERRUPTED
    LOGGER.info("Done")
    return EXIT_OK


def _resolve_config(args: argparse.Namespace) -> PyramidConfig:
    config = load_config(args.config) if args.config is not None else PyramidConfig()
    if args.min_zoom is not None:
        config.min_zoom = args.min_zoom
    if args.max_zoom is not None:
        config.max_zoom = args.max_zoom
    if args.concurrency is not None:
        config.concurrency = args.concurrency
    if args.batch_size is not None:
        config.batch_size = args.batch_size
    if args.name is not None:
        config.name = args.name
    config.validate()
    return config


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
