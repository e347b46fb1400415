"""Command-line entry point.

Usage:
    gpkg-mosaic mosaic <input_dir> <output_dir> <output_filename> \\
        [--epsg CODE] [--workers N] [--policy fail-fast|best-effort]
    gpkg-mosaic convert <input_path> <target_dir> [--epsg CODE]

Exit status is 0 on success, 2 for invalid invocations, 1 when the
pipeline fails, and 130 when interrupted (SIGINT or SIGTERM).
"""

from __future__ import annotations

import argparse
import pathlib
import signal
import sys
from collections.abc import Sequence

import structlog

from gpkg_mosaic import __version__
from gpkg_mosaic.core import config
from gpkg_mosaic.core import errors
from gpkg_mosaic.core import logging_config
from gpkg_mosaic.services import converter, pipeline

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130

logger = structlog.get_logger(__name__)


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}") from None
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer: {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gpkg-mosaic",
        description="Rasterize GeoPackages into a compressed GeoTIFF mosaic.",
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "--log-level",
        default=None,
        help="Minimum log level (default: from settings)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit log events as JSON lines",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    mosaic = commands.add_parser(
        "mosaic",
        help="Rasterize every unit of a directory and build the mosaic",
        epilog="Example:\n  %(prog)s /data/gpkg /data/out mosaic.tif --epsg 4326 --workers 4",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    mosaic.add_argument("input_dir", type=pathlib.Path)
    mosaic.add_argument("output_dir", type=pathlib.Path)
    mosaic.add_argument("output_filename")
    mosaic.add_argument(
        "--epsg",
        type=int,
        default=None,
        help="EPSG code for all units (default: detected per unit)",
    )
    mosaic.add_argument(
        "--workers",
        type=_positive_int,
        default=None,
        help="Number of parallel conversions (default: from settings, 1)",
    )
    mosaic.add_argument(
        "--policy",
        choices=("fail-fast", "best-effort"),
        default=None,
        help="What to do when a unit fails (default: fail-fast)",
    )

    convert = commands.add_parser("convert", help="Convert a single unit")
    convert.add_argument("input_path", type=pathlib.Path)
    convert.add_argument("target_dir", type=pathlib.Path)
    convert.add_argument(
        "--epsg",
        type=int,
        default=None,
        help="EPSG code of the unit (default: detected)",
    )
    return parser


def _run(args: argparse.Namespace, settings: config.Settings) -> pathlib.Path:
    if args.command == "convert":
        tile = converter.convert_unit(
            args.input_path,
            args.target_dir,
            epsg_override=args.epsg,
            settings=settings,
        )
        return tile.path

    result = pipeline.run_pipeline(
        args.input_dir,
        args.output_dir,
        args.output_filename,
        epsg_override=args.epsg,
        worker_count=args.workers,
        settings=settings,
        failure_policy=args.policy,
    )
    return result.final_path


def main(argv: Sequence[str] | None = None) -> int:
    """Parse arguments, run the requested command and map errors to exit codes."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = config.get_settings()
    logging_config.configure_logging(
        args.log_level or settings.log_level,
        args.log_json or settings.log_json,
    )
    signal.signal(signal.SIGTERM, signal.default_int_handler)

    try:
        output = _run(args, settings)
    except errors.UsageError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_USAGE
    except (errors.InterruptError, KeyboardInterrupt):
        print("Run interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED
    except errors.MosaicError as exc:
        unit = f" (unit: {exc.unit})" if exc.unit else ""
        print(f"Error: {type(exc).__name__}: {exc}{unit}", file=sys.stderr)
        return EXIT_FAILED

    print(f"Output file created: {output}")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
