"""Pipeline value types and the run registry.

Example:
    >>> from gpkg_mosaic.db.models import VectorUnit, PRODUCTION_PROFILE
    >>> from gpkg_mosaic.db.repository import get_run_repository
    >>> repo = get_run_repository()
"""
