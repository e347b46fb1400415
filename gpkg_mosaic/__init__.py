"""Parallel GeoPackage rasterization and GeoTIFF mosaic pipeline.

Every GeoPackage found in an input directory is rasterized into a
single-band tile (pixel value from an integer classification attribute,
nodata 0), the tiles are merged into one mosaic, and the mosaic is
re-encoded with ZSTD compression, a horizontal predictor and 1024x1024
internal tiles. Rasterization and encoding are delegated to the GDAL
command-line utilities.

- services: CRS resolution, per-unit conversion, parallel dispatch,
  aggregation, final compression and the end-to-end pipeline
- api / main: FastAPI binding
- cli: command-line binding
"""

__version__ = "0.1.0"
