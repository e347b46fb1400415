"""Coordinate reference system resolution for vector units.

Each unit's EPSG code is resolved exactly once, before rasterization. An
explicit override wins and is used verbatim; otherwise the code is read
from the summary that ``ogrinfo -so -al`` prints for the unit.

Example:
    >>> from pathlib import Path
    >>> from gpkg_mosaic.services.crs import resolve_crs
    >>> resolve_crs(Path("block_07.gpkg"), override=25832)
    25832
    >>> resolve_crs(Path("block_07.gpkg"))  # detected from the file
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

import structlog

from gpkg_mosaic.core import errors
from gpkg_mosaic.utils import gdal_helpers

if TYPE_CHECKING:
    import pathlib

logger = structlog.get_logger(__name__)

# "EPSG:4326" as printed by older GDAL releases and PROJ strings.
_LEGACY_CODE = re.compile(r"EPSG:(\d+)")
# Root identifier of a WKT2 dump, indented one level below the CRS keyword.
_WKT2_ROOT_ID = re.compile(r'^[ \t]{0,4}ID\["EPSG",\s*(\d+)\]', re.MULTILINE)
_WKT_ANY_ID = re.compile(r'(?:ID|AUTHORITY)\["EPSG",\s*"?(\d+)"?\]')


def parse_epsg(summary: str) -> int | None:
    """Extract the first recognizable EPSG code from ``ogrinfo`` output.

    Args:
        summary: Text printed by ``ogrinfo -so``.

    Returns:
        The EPSG code, or None when the text names none.
    """
    for pattern in (_LEGACY_CODE, _WKT2_ROOT_ID):
        match = pattern.search(summary)
        if match:
            return int(match.group(1))

    # WKT1 puts the CRS authority last; nested datum/spheroid ones come first.
    matches = _WKT_ANY_ID.findall(summary)
    if matches:
        return int(matches[-1])
    return None


def resolve_crs(
    unit_path: pathlib.Path,
    override: int | str | None = None,
) -> int:
    """Determine the EPSG code to tag a unit's tile with.

    Args:
        unit_path: Path to the vector unit.
        override: Explicit code; returned as-is without checking it
            against the unit's own metadata.

    Returns:
        Integer EPSG code.

    Raises:
        UsageError: If the override is not an integer.
        CRSResolutionError: If no override is given and the unit's metadata
            names no EPSG code, or ``ogrinfo`` cannot read the unit.
    """
    if override is not None and str(override).strip():
        try:
            code = int(override)
        except ValueError as exc:
            raise errors.UsageError(
                f"Invalid EPSG override: {override!r}",
                unit=str(unit_path),
            ) from exc
        logger.info("crs.override", unit=str(unit_path), epsg=code)
        return code

    try:
        summary = gdal_helpers.run_command(
            ("ogrinfo", "-so", "-al", str(unit_path))
        )
    except gdal_helpers.CommandError as exc:
        raise errors.CRSResolutionError(
            f"Unable to inspect {unit_path}: {exc}",
            unit=str(unit_path),
        ) from exc

    code = parse_epsg(summary)
    if code is None:
        raise errors.CRSResolutionError(
            f"Unable to determine CRS from {unit_path}, "
            "and no EPSG code was provided",
            unit=str(unit_path),
        )

    logger.info("crs.detected", unit=str(unit_path), epsg=code)
    return code
