"""Per-unit conversion of a vector unit into a compressed raster tile.

A unit is rasterized with ``gdal_rasterize`` (pixel value taken from the
classification attribute, fixed resolution, nodata 0, EPSG code resolved
beforehand) and then re-encoded with ``gdal_translate`` using the
per-tile compression profile. The tile only appears under its final name
through an atomic rename, so a half-written tile is never visible; any
failure removes the partial files and raises ConversionError naming the
unit and the failing stage.

Workers of the dispatcher call run_job() with an immutable ConversionJob
and get a UnitResult back; convert_unit() is the direct, single-unit entry
point.

Example:
    Convert one GeoPackage:
        >>> from pathlib import Path
        >>> from gpkg_mosaic.services.converter import convert_unit
        >>> tile = convert_unit(Path("block_07.gpkg"), Path("/out/temp"))
        >>> # tile.path -> /out/temp/block_07_<digest>_compressed.tif

    The commands executed:
        $ gdal_rasterize -a class_id -tr 0.25 0.25 -ot Byte -a_nodata 0 \\
        $    -a_srs EPSG:25832 -of GTiff block_07.gpkg <scratch>.tif
        $ gdal_translate -co COMPRESS=ZSTD -co PREDICTOR=2 -co TILED=YES \\
        $    -co BLOCKXSIZE=1024 -co BLOCKYSIZE=1024 <scratch>.tif <partial>.tif
"""

from __future__ import annotations

import contextlib
import dataclasses
import os
import pathlib

import rio_tiler.io as rio_tiler_io
import structlog

from gpkg_mosaic.core import config as config_module
from gpkg_mosaic.core import errors
from gpkg_mosaic.db import models
from gpkg_mosaic.services import crs
from gpkg_mosaic.utils import gdal_helpers

logger = structlog.get_logger(__name__)


@dataclasses.dataclass(frozen=True)
class ConversionJob:
    """Everything one worker needs to convert one unit.

    Built once per unit by the dispatcher from the run settings, so
    workers never consult process-wide configuration.
    """

    unit: models.VectorUnit
    target_dir: pathlib.Path
    attribute_name: str = "class_id"
    resolution: tuple[float, float] = (0.25, 0.25)
    nodata: int = 0
    pixel_type: str = "Byte"
    profile: models.CompressionProfile | None = models.PRODUCTION_PROFILE

    @classmethod
    def from_settings(
        cls,
        unit: models.VectorUnit,
        target_dir: pathlib.Path,
        settings: config_module.Settings,
    ) -> ConversionJob:
        profile = None
        if settings.tile_compression_enabled:
            profile = dataclasses.replace(
                models.PRODUCTION_PROFILE,
                block_size=settings.tile_block_size,
            )
        return cls(
            unit=unit,
            target_dir=target_dir,
            attribute_name=settings.attribute_name,
            resolution=settings.resolution,
            nodata=settings.nodata,
            pixel_type=settings.pixel_type,
            profile=profile,
        )

    @property
    def tile_path(self) -> pathlib.Path:
        return self.target_dir / self.unit.tile_name

    @property
    def scratch_path(self) -> pathlib.Path:
        return self.target_dir / f".{self.tile_path.stem}.rasterized.tif"

    @property
    def partial_path(self) -> pathlib.Path:
        return self.target_dir / f".{self.tile_path.stem}.partial.tif"


def _remove_quietly(*paths: pathlib.Path) -> None:
    for path in paths:
        with contextlib.suppress(FileNotFoundError):
            path.unlink()


def _read_bbox(raster_path: pathlib.Path) -> models.BBox | None:
    """Read a raster's extent with rio-tiler.

    Returns:
        Tuple of (minx, miny, maxx, maxy) in the raster's own CRS,
        or None if bounds cannot be determined.
    """
    with rio_tiler_io.Reader(input=str(raster_path)) as reader:
        bounds = reader.bounds
    if bounds:
        left, bottom, right, top = bounds
        return (float(left), float(bottom), float(right), float(top))
    return None


def rasterize(job: ConversionJob, epsg: int) -> pathlib.Path:
    """Burn the unit's polygons into a single-band scratch raster.

    Raises:
        ConversionError: stage "rasterize", if gdal_rasterize fails.
    """
    res_x, res_y = job.resolution
    command = (
        "gdal_rasterize",
        "-a",
        job.attribute_name,
        "-tr",
        str(res_x),
        str(res_y),
        "-ot",
        job.pixel_type,
        "-a_nodata",
        str(job.nodata),
        "-a_srs",
        f"EPSG:{epsg}",
        "-of",
        "GTiff",
        str(job.unit.path),
        str(job.scratch_path),
    )
    try:
        gdal_helpers.run_command(command)
    except gdal_helpers.CommandError as exc:
        _remove_quietly(job.scratch_path)
        raise errors.ConversionError(
            f"Rasterizing {job.unit.path} failed: {exc}",
            stage="rasterize",
            unit=str(job.unit.path),
        ) from exc
    return job.scratch_path


def encode(job: ConversionJob, raster_path: pathlib.Path) -> models.BBox | None:
    """Re-encode the scratch raster into the partial tile and read its extent.

    With no profile the scratch raster itself becomes the partial tile.

    Raises:
        ConversionError: stage "encode", if gdal_translate fails or the
            encoded raster cannot be read back.
    """
    try:
        if job.profile is None:
            os.replace(raster_path, job.partial_path)
        else:
            gdal_helpers.run_command(
                (
                    "gdal_translate",
                    *gdal_helpers.creation_options(
                        job.profile.creation_options()
                    ),
                    str(raster_path),
                    str(job.partial_path),
                )
            )
        return _read_bbox(job.partial_path)
    except Exception as exc:
        _remove_quietly(job.partial_path)
        raise errors.ConversionError(
            f"Encoding tile for {job.unit.path} failed: {exc}",
            stage="encode",
            unit=str(job.unit.path),
        ) from exc
    finally:
        _remove_quietly(raster_path)


def convert(job: ConversionJob) -> models.RasterTile:
    """Resolve, rasterize, encode and finalize one unit.

    Returns:
        Descriptor of the finished tile.

    Raises:
        CRSResolutionError: If the unit's CRS cannot be resolved.
        ConversionError: If rasterizing or encoding fails.
    """
    log = logger.bind(unit=str(job.unit.path))
    epsg = crs.resolve_crs(job.unit.path, job.unit.epsg_override)

    log.info("convert.rasterize", scratch=str(job.scratch_path), epsg=epsg)
    scratch = rasterize(job, epsg)

    log.info("convert.encode", partial=str(job.partial_path))
    bbox = encode(job, scratch)

    try:
        os.replace(job.partial_path, job.tile_path)
    except OSError as exc:
        _remove_quietly(job.partial_path)
        raise errors.ConversionError(
            f"Finalizing tile for {job.unit.path} failed: {exc}",
            stage="encode",
            unit=str(job.unit.path),
        ) from exc
    log.info("convert.done", tile=str(job.tile_path), bbox=bbox)
    return models.RasterTile(
        path=job.tile_path,
        unit=job.unit,
        crs=epsg,
        bbox=bbox,
    )


def run_job(job: ConversionJob) -> models.UnitResult:
    """Worker entry point: convert one unit and report the outcome as a value.

    Pipeline errors are returned inside the UnitResult rather than raised,
    so the dispatcher decides what a failure means for the run.
    """
    try:
        tile = convert(job)
    except errors.MosaicError as exc:
        logger.warning(
            "convert.failed",
            unit=str(job.unit.path),
            error=str(exc),
            kind=type(exc).__name__,
        )
        return models.UnitResult(unit=job.unit, error=exc)
    return models.UnitResult(unit=job.unit, tile=tile)


def convert_unit(
    input_path: pathlib.Path,
    target_dir: pathlib.Path,
    epsg_override: int | None = None,
    settings: config_module.Settings | None = None,
) -> models.RasterTile:
    """Convert a single vector unit into a compressed tile.

    Args:
        input_path: Path to the GeoPackage to rasterize.
        target_dir: Existing directory receiving the tile.
        epsg_override: Explicit EPSG code; detected from the unit if None.
        settings: Run settings; the cached process settings if None.

    Returns:
        Descriptor of the tile written under target_dir.

    Raises:
        UsageError: If the input file or the target directory is missing.
        CRSResolutionError: If the CRS cannot be resolved.
        ConversionError: If rasterizing or encoding fails.
    """
    settings = settings or config_module.get_settings()
    if not input_path.is_file():
        raise errors.UsageError(
            f"Input file does not exist: {input_path}",
            unit=str(input_path),
        )
    if not target_dir.is_dir():
        raise errors.UsageError(f"Target directory does not exist: {target_dir}")

    unit = models.VectorUnit(path=input_path, epsg_override=epsg_override)
    job = ConversionJob.from_settings(unit, target_dir, settings)
    return convert(job)
