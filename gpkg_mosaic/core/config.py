"""Pipeline settings and configuration management.

This module provides Pydantic-based settings management that loads
configuration from environment variables (prefixed with ``MOSAIC_``) or a
.env file. Settings cover the rasterization constants shared by every tile
of a run (attribute, resolution, nodata, pixel type), discovery and
intermediate-directory naming, the worker pool, the failure policy, and
logging.

Example:
    Settings can be accessed via the cached get_settings() function:
        >>> from gpkg_mosaic.core.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.worker_count)

    Environment variables can override defaults:
        >>> MOSAIC_WORKER_COUNT=8
        >>> MOSAIC_FAILURE_POLICY=best-effort
        >>> MOSAIC_RESOLUTION_X=0.5
"""

import functools
from typing import Literal

import pydantic
import pydantic_settings

FailurePolicy = Literal["fail-fast", "best-effort"]
WorkerBackend = Literal["process", "thread"]


class Settings(pydantic_settings.BaseSettings):
    """Runtime configuration pulled from environment variables or defaults.

    Attributes:
        attribute_name: Integer feature attribute burned in as pixel value.
        resolution_x: Horizontal pixel size in CRS units.
        resolution_y: Vertical pixel size in CRS units.
        nodata: Nodata value of every tile and of the mosaic.
        pixel_type: GDAL output data type of the rasterized tiles.
        input_suffix: File suffix used to discover vector units.
        tile_dir_name: Name of the intermediate tile directory created
            inside the output directory.
        worker_count: Default number of concurrent conversions.
        worker_backend: Pool flavour; "process" for production runs,
            "thread" where workers must share the parent interpreter.
        failure_policy: "fail-fast" aborts on the first unit failure,
            "best-effort" attempts every unit before deciding.
        tile_compression_enabled: Re-encode each tile with the per-tile
            compression profile; when off, tiles keep GDAL's default
            encoding.
        tile_block_size: Block size of the per-tile compression profile.
        merge_command: Executable used to merge tiles.
        log_level: Minimum level of emitted log events.
        log_json: Render log events as JSON lines instead of console text.
    """

    attribute_name: str = "class_id"
    resolution_x: float = pydantic.Field(default=0.25, gt=0)
    resolution_y: float = pydantic.Field(default=0.25, gt=0)
    nodata: int = 0
    pixel_type: str = "Byte"
    input_suffix: str = ".gpkg"
    tile_dir_name: str = "temp"
    worker_count: int = pydantic.Field(default=1, ge=1)
    worker_backend: WorkerBackend = "process"
    failure_policy: FailurePolicy = "fail-fast"
    tile_compression_enabled: bool = True
    tile_block_size: int = pydantic.Field(default=1024, ge=16)
    merge_command: str = "gdal_merge.py"
    log_level: str = "INFO"
    log_json: bool = False

    model_config = pydantic_settings.SettingsConfigDict(
        env_prefix="MOSAIC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def resolution(self) -> tuple[float, float]:
        return (self.resolution_x, self.resolution_y)


@functools.lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Settings are loaded from environment variables or .env file and cached
    for the lifetime of the process. Subsequent calls return the same
    cached instance.

    Returns:
        Settings instance with all configuration values populated.
    """
    return Settings()
