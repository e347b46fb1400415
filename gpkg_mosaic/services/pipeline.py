"""End-to-end rasterize / mosaic pipeline.

Stages run strictly in sequence; no stage starts before the previous one
is done:

    Discover -> Dispatch (parallel) -> Barrier -> Aggregate -> Compress
    -> Cleanup -> Done

Any failure moves the run to the terminal Failed state and is raised to
the caller. Intermediates (the tile directory and the uncompressed mosaic)
are removed only after the final artifact exists, so a failed run leaves
them on disk for inspection.

Example:
    >>> from pathlib import Path
    >>> from gpkg_mosaic.services.pipeline import process_and_mosaic
    >>> final = process_and_mosaic(
    ...     Path("/data/gpkg"),
    ...     Path("/data/out"),
    ...     "landcover.tif",
    ...     epsg_override=25832,
    ...     worker_count=4,
    ... )
    >>> # final -> /data/out/landcover_compressed.tif
"""

from __future__ import annotations

import enum
import shutil
from typing import TYPE_CHECKING

import structlog

from gpkg_mosaic.core import config as config_module
from gpkg_mosaic.core import errors
from gpkg_mosaic.db import models
from gpkg_mosaic.services import aggregator, compressor, dispatcher

if TYPE_CHECKING:
    import pathlib

logger = structlog.get_logger(__name__)


class Stage(enum.StrEnum):
    DISCOVER = "discover"
    DISPATCH = "dispatch"
    AGGREGATE = "aggregate"
    COMPRESS = "compress"
    CLEANUP = "cleanup"
    DONE = "done"
    FAILED = "failed"


def discover_units(
    input_dir: pathlib.Path,
    suffix: str = ".gpkg",
) -> list[models.VectorUnit]:
    """Find vector units below input_dir, sorted by path."""
    paths = sorted(
        path.absolute()
        for path in input_dir.rglob(f"*{suffix}")
        if path.is_file()
    )
    return [models.VectorUnit(path=path) for path in paths]


def cleanup(
    tile_dir: pathlib.Path,
    mosaic_path: pathlib.Path,
    final_path: pathlib.Path,
) -> None:
    """Remove the tile directory and the uncompressed mosaic.

    Raises:
        ConversionError: stage "cleanup", if the final artifact does not
            exist (nothing is removed in that case) or an intermediate
            cannot be removed.
    """
    if not final_path.is_file():
        raise errors.ConversionError(
            f"Refusing to clean up: {final_path} was not written",
            stage="cleanup",
        )
    try:
        if tile_dir.exists():
            shutil.rmtree(tile_dir)
        mosaic_path.unlink(missing_ok=True)
    except OSError as exc:
        raise errors.ConversionError(
            f"Cannot remove intermediates: {exc}",
            stage="cleanup",
        ) from exc
    logger.info("cleanup.done", tile_dir=str(tile_dir), mosaic=str(mosaic_path))


def _validate(
    input_dir: pathlib.Path,
    output_dir: pathlib.Path,
    output_filename: str,
    worker_count: int,
) -> None:
    if not input_dir.is_dir():
        raise errors.UsageError(f"Input directory does not exist: {input_dir}")
    if not output_dir.is_dir():
        raise errors.UsageError(f"Output directory does not exist: {output_dir}")
    if not output_filename or "/" in output_filename:
        raise errors.UsageError(f"Invalid output filename: {output_filename!r}")
    if isinstance(worker_count, bool) or not isinstance(worker_count, int):
        raise errors.UsageError(
            f"Worker count must be a positive integer, got {worker_count!r}"
        )
    if worker_count < 1:
        raise errors.UsageError(
            f"Worker count must be a positive integer, got {worker_count}"
        )


def _raise_first_failure(report: models.DispatchReport) -> None:
    for failure in report.failures:
        logger.error(
            "dispatch.unit_failed",
            unit=str(failure.unit.path),
            error=str(failure.error),
            kind=type(failure.error).__name__,
        )
    first = report.failures[0].error
    if isinstance(first, errors.MosaicError):
        raise first
    raise errors.ConversionError(
        str(first),
        stage="worker",
        unit=str(report.failures[0].unit.path),
    )


def run_pipeline(
    input_dir: pathlib.Path,
    output_dir: pathlib.Path,
    output_filename: str,
    epsg_override: int | None = None,
    worker_count: int | None = None,
    settings: config_module.Settings | None = None,
    failure_policy: config_module.FailurePolicy | None = None,
) -> models.MosaicResult:
    """Run every stage and describe the outcome.

    Args:
        input_dir: Directory searched recursively for vector units.
        output_dir: Existing directory for intermediates and the artifact.
        output_filename: Name of the uncompressed mosaic; the artifact is
            written as ``<stem>_compressed.tif`` next to it.
        epsg_override: EPSG code applied to every unit; detected per unit
            if None.
        worker_count: Concurrent conversions; settings.worker_count if None.
        settings: Run settings; the cached process settings if None.
        failure_policy: Overrides settings.failure_policy when given.

    Returns:
        MosaicResult for the final artifact.

    Raises:
        UsageError: On invalid directories, filename or worker count.
        CRSResolutionError: If a unit's CRS cannot be resolved.
        ConversionError: If a conversion or the final compression fails.
        AggregationError: If there are no tiles or merging fails.
        InterruptError: If the run is interrupted during dispatch.
    """
    settings = settings or config_module.get_settings()
    if worker_count is None:
        worker_count = settings.worker_count
    _validate(input_dir, output_dir, output_filename, worker_count)

    tile_dir = output_dir / settings.tile_dir_name
    mosaic_path = output_dir / output_filename
    final_path = compressor.final_path_for(mosaic_path)
    log = logger.bind(input_dir=str(input_dir), output=str(final_path))

    stage = Stage.DISCOVER
    try:
        units = discover_units(input_dir, settings.input_suffix)
        log.info("pipeline.discovered", stage=stage, units=len(units))
        try:
            tile_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise errors.UsageError(
                f"Cannot create tile directory {tile_dir}: {exc}"
            ) from exc

        stage = Stage.DISPATCH
        report = dispatcher.Dispatcher(
            tile_dir,
            settings,
            worker_count=worker_count,
            epsg_override=epsg_override,
            failure_policy=failure_policy,
        ).run_all(units)
        if not report.ok:
            _raise_first_failure(report)

        stage = Stage.AGGREGATE
        mosaic = aggregator.merge_tiles(
            report.tiles,
            mosaic_path,
            nodata=settings.nodata,
            merge_command=settings.merge_command,
        )

        stage = Stage.COMPRESS
        compressor.compress_final(mosaic.path, final_path)

        stage = Stage.CLEANUP
        cleanup(tile_dir, mosaic.path, final_path)
    except KeyboardInterrupt as exc:
        log.error("pipeline.failed", stage=stage, error="interrupted")
        raise errors.InterruptError(f"Run interrupted during {stage}") from exc
    except errors.MosaicError as exc:
        log.error(
            "pipeline.failed",
            stage=stage,
            error=str(exc),
            kind=type(exc).__name__,
            unit=exc.unit,
        )
        raise

    log.info("pipeline.done", stage=Stage.DONE, tiles=len(mosaic.tiles))
    return models.MosaicResult(
        final_path=final_path,
        tile_count=len(mosaic.tiles),
        bbox=mosaic.bbox,
        crs_codes=mosaic.crs_codes,
    )


def process_and_mosaic(
    input_dir: pathlib.Path,
    output_dir: pathlib.Path,
    output_filename: str,
    epsg_override: int | None = None,
    worker_count: int = 1,
    settings: config_module.Settings | None = None,
) -> pathlib.Path:
    """Rasterize every unit in input_dir and build the compressed mosaic.

    Returns:
        Path of the final compressed artifact.

    Raises:
        See run_pipeline().
    """
    result = run_pipeline(
        input_dir,
        output_dir,
        output_filename,
        epsg_override=epsg_override,
        worker_count=worker_count,
        settings=settings,
    )
    return result.final_path
