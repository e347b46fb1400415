"""Final re-compression of the merged mosaic.

The mosaic is re-encoded with the production profile (ZSTD, horizontal
predictor, 1024x1024 internal tiles) into the final artifact. The artifact
is written under a partial name and renamed once complete; on failure the
partial file is removed and the mosaic is kept for diagnosis.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import structlog

from gpkg_mosaic.core import errors
from gpkg_mosaic.db import models
from gpkg_mosaic.utils import gdal_helpers

if TYPE_CHECKING:
    import pathlib

logger = structlog.get_logger(__name__)


def final_path_for(mosaic_path: pathlib.Path) -> pathlib.Path:
    """Artifact path next to the mosaic: ``<stem>_compressed.tif``."""
    return mosaic_path.with_name(f"{mosaic_path.stem}_compressed.tif")


def compress_final(
    mosaic_path: pathlib.Path,
    final_path: pathlib.Path,
    profile: models.CompressionProfile = models.PRODUCTION_PROFILE,
) -> pathlib.Path:
    """Re-encode the mosaic into the final compressed artifact.

    Args:
        mosaic_path: Uncompressed merged raster.
        final_path: Destination of the artifact.
        profile: Compression profile; the production profile by default.

    Returns:
        final_path, once the artifact exists.

    Raises:
        ConversionError: stage "final-compress", if gdal_translate fails.
    """
    partial_path = final_path.with_name(f".{final_path.stem}.partial.tif")
    command = (
        "gdal_translate",
        *gdal_helpers.creation_options(profile.creation_options()),
        str(mosaic_path),
        str(partial_path),
    )
    logger.info("compress.start", mosaic=str(mosaic_path), final=str(final_path))
    try:
        gdal_helpers.run_command(command)
        os.replace(partial_path, final_path)
    except (gdal_helpers.CommandError, OSError) as exc:
        partial_path.unlink(missing_ok=True)
        raise errors.ConversionError(
            f"Final compression of {mosaic_path} failed: {exc}",
            stage="final-compress",
        ) from exc

    logger.info("compress.done", final=str(final_path))
    return final_path
