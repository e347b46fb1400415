"""Mosaic aggregation of per-unit tiles.

All tiles of a run share CRS, resolution and nodata; the aggregator does
not reconcile mismatches. Tiles are merged with ``gdal_merge.py`` into one
raster covering the union of their extents, initialised to nodata. Merge
order is the tiles' source-unit path order, so overlaps resolve
deterministically: the later tile wins, except where it holds nodata.

The tile list is handed to ``gdal_merge.py`` through ``--optfile`` so runs
with thousands of tiles stay within command-line length limits.
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING

import structlog

from gpkg_mosaic.core import errors
from gpkg_mosaic.db import models
from gpkg_mosaic.utils import gdal_helpers

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Iterable


logger = structlog.get_logger(__name__)


@dataclasses.dataclass(frozen=True)
class Mosaic:
    """Uncompressed merge result.

    Attributes:
        path: Location of the merged raster.
        tiles: Tiles merged into it, in merge order.
        bbox: Union of the tile extents.
    """

    path: pathlib.Path
    tiles: tuple[models.RasterTile, ...]
    bbox: models.BBox | None

    @property
    def crs_codes(self) -> tuple[int, ...]:
        return tuple(sorted({tile.crs for tile in self.tiles}))


def merge_order(tiles: Iterable[models.RasterTile]) -> list[models.RasterTile]:
    """Sort tiles by source unit identity (their input path)."""
    return sorted(tiles, key=lambda tile: str(tile.unit.path))


def merge_tiles(
    tiles: Iterable[models.RasterTile],
    mosaic_path: pathlib.Path,
    nodata: int = 0,
    merge_command: str = "gdal_merge.py",
) -> Mosaic:
    """Merge tiles into a single raster.

    Args:
        tiles: Tile descriptors produced by the dispatcher.
        mosaic_path: Destination of the merged raster; an existing file
            there is removed first.
        nodata: Value assigned to uncovered pixels and ignored in inputs.
        merge_command: Merge executable.

    Returns:
        Mosaic describing the merged raster.

    Raises:
        AggregationError: If there are no tiles, a tile is missing, the
            destination cannot be prepared, or the merge command fails.
    """
    ordered = merge_order(tiles)
    if not ordered:
        raise errors.AggregationError("No tiles to merge")

    missing = [tile for tile in ordered if not tile.path.is_file()]
    if missing:
        raise errors.AggregationError(
            f"Cannot open tile {missing[0].path}",
            unit=str(missing[0].unit.path),
        )

    option_file = mosaic_path.with_name(f".{mosaic_path.stem}.inputs.txt")
    try:
        # gdal_merge.py updates an existing output in place.
        mosaic_path.unlink(missing_ok=True)
        option_file.write_text(
            "\n".join(f'"{tile.path}"' for tile in ordered) + "\n",
            encoding="utf-8",
        )
    except OSError as exc:
        raise errors.AggregationError(
            f"Cannot prepare merge into {mosaic_path}: {exc}"
        ) from exc
    command = (
        merge_command,
        "-o",
        str(mosaic_path),
        "-of",
        "GTiff",
        "-a_nodata",
        str(nodata),
        "-init",
        str(nodata),
        "-n",
        str(nodata),
        "--optfile",
        str(option_file),
    )
    logger.info("aggregate.merge", tiles=len(ordered), mosaic=str(mosaic_path))
    try:
        gdal_helpers.run_command(command)
    except gdal_helpers.CommandError as exc:
        raise errors.AggregationError(f"Merging tiles failed: {exc}") from exc
    finally:
        option_file.unlink(missing_ok=True)

    bbox = models.union_bbox([tile.bbox for tile in ordered])
    logger.info("aggregate.done", mosaic=str(mosaic_path), bbox=bbox)
    return Mosaic(path=mosaic_path, tiles=tuple(ordered), bbox=bbox)
