"""Data models for the rasterization and mosaic pipeline.

This module defines the value types that flow between pipeline stages:
the vector units discovered on disk, the compression profiles applied to
tiles and to the final artifact, the tile descriptors returned by workers,
the per-worker results collected behind the dispatch barrier, and the
record of a completed run.

Example:
    Describe a unit and its tile:
        >>> from pathlib import Path
        >>> from gpkg_mosaic.db.models import VectorUnit, RasterTile
        >>> unit = VectorUnit(path=Path("/data/gpkg/block_07.gpkg"))
        >>> unit.tile_name
        >>> # Returns: "block_07_<first 8 hex digits of unit_id>_compressed.tif"
        >>> tile = RasterTile(
        ...     path=Path("/out/temp") / unit.tile_name,
        ...     unit=unit,
        ...     crs=25832,
        ...     bbox=(560000.0, 5930000.0, 561000.0, 5931000.0),
        ... )
"""

from __future__ import annotations

import dataclasses
import datetime
import hashlib
import pathlib
from typing import Literal

BBox = tuple[float, float, float, float]
RunStatus = Literal["succeeded", "failed"]


@dataclasses.dataclass(frozen=True)
class VectorUnit:
    """One input feature collection to be rasterized.

    Attributes:
        path: Path to the GeoPackage (or other OGR-readable container).
        epsg_override: Explicit EPSG code; skips CRS detection when set.
    """

    path: pathlib.Path
    epsg_override: int | None = None

    @property
    def unit_id(self) -> str:
        """Stable identity derived from the unit's absolute path."""
        resolved = str(self.path.expanduser().absolute())
        return hashlib.sha1(resolved.encode("utf-8")).hexdigest()

    @property
    def tile_name(self) -> str:
        """Tile filename, unique even when two units share a base name."""
        return f"{self.path.stem}_{self.unit_id[:8]}_compressed.tif"


@dataclasses.dataclass(frozen=True)
class CompressionProfile:
    """GeoTIFF creation options applied when re-encoding a raster.

    Attributes:
        codec: Value of the COMPRESS creation option.
        predictor: Value of the PREDICTOR option (2 = horizontal
            differencing), or None to omit it.
        tiled: Write an internally tiled GeoTIFF.
        block_size: Square block edge length when tiled.
    """

    codec: str = "ZSTD"
    predictor: int | None = 2
    tiled: bool = True
    block_size: int = 1024

    def creation_options(self) -> list[str]:
        options = [f"COMPRESS={self.codec}"]
        if self.predictor is not None:
            options.append(f"PREDICTOR={self.predictor}")
        if self.tiled:
            options.extend(
                (
                    "TILED=YES",
                    f"BLOCKXSIZE={self.block_size}",
                    f"BLOCKYSIZE={self.block_size}",
                )
            )
        return options


PRODUCTION_PROFILE = CompressionProfile(
    codec="ZSTD", predictor=2, tiled=True, block_size=1024
)


@dataclasses.dataclass(frozen=True)
class RasterTile:
    """Descriptor of a tile produced from one VectorUnit.

    Attributes:
        path: Final location of the tile.
        unit: Source unit the tile was rasterized from.
        crs: EPSG code the tile was tagged with.
        bbox: Tile extent as (minx, miny, maxx, maxy), or None when it
            could not be read back.
    """

    path: pathlib.Path
    unit: VectorUnit
    crs: int
    bbox: BBox | None = None


@dataclasses.dataclass(frozen=True)
class UnitResult:
    """Outcome of one worker invocation: a tile or a typed error."""

    unit: VectorUnit
    tile: RasterTile | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.tile is not None


@dataclasses.dataclass
class DispatchReport:
    """Everything the dispatcher collected once its barrier released.

    Attributes:
        tiles: Tiles of successful units, in input-unit order.
        failures: Failed unit results, in input-unit order.
        aborted: True when a fail-fast dispatch stopped early; units that
            were never attempted appear in neither list.
    """

    tiles: list[RasterTile] = dataclasses.field(default_factory=list)
    failures: list[UnitResult] = dataclasses.field(default_factory=list)
    aborted: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclasses.dataclass(frozen=True)
class MosaicResult:
    """Summary of a successful pipeline run.

    Attributes:
        final_path: The compressed mosaic, the only surviving output.
        tile_count: Number of tiles merged into the mosaic.
        bbox: Union extent of all merged tiles.
        crs_codes: Distinct EPSG codes the tiles were tagged with.
    """

    final_path: pathlib.Path
    tile_count: int
    bbox: BBox | None
    crs_codes: tuple[int, ...] = ()


def union_bbox(boxes: list[BBox | None]) -> BBox | None:
    """Smallest box covering every known extent, or None if none is known."""
    known = [box for box in boxes if box is not None]
    if not known:
        return None
    return (
        min(box[0] for box in known),
        min(box[1] for box in known),
        max(box[2] for box in known),
        max(box[3] for box in known),
    )


@dataclasses.dataclass
class MosaicRun:
    """Record of one mosaic run requested through the HTTP binding.

    Attributes:
        id: Unique run identifier (UUID string).
        input_dir: Directory the units were discovered in.
        output_dir: Directory receiving intermediates and the artifact.
        output_filename: Name of the uncompressed mosaic.
        status: "succeeded" or "failed".
        final_path: Compressed artifact, set on success.
        tile_count: Number of merged tiles, set on success.
        bbox: Union extent of the mosaic, set on success.
        error: Failure message, set on failure.
        stage: Failing stage for conversion errors.
        unit: Failing unit, when the failure belongs to one.
        created_at: Timestamp when the run finished.
    """

    id: str
    input_dir: str
    output_dir: str
    output_filename: str
    status: RunStatus
    final_path: str | None = None
    tile_count: int | None = None
    bbox: BBox | None = None
    error: str | None = None
    stage: str | None = None
    unit: str | None = None
    created_at: datetime.datetime = dataclasses.field(
        default_factory=lambda: datetime.datetime.now(tz=datetime.UTC)
    )
