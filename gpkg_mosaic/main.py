"""FastAPI application entrypoint.

This module provides the application factory that configures logging,
includes the mosaic API router, and exposes a health check endpoint.

Example:
    The application can be run with uvicorn:
        $ uvicorn gpkg_mosaic.main:app

    Or imported and used programmatically:
        >>> from gpkg_mosaic.main import app
"""

import fastapi

from gpkg_mosaic import __version__
from gpkg_mosaic.api import mosaics
from gpkg_mosaic.core import config
from gpkg_mosaic.core import logging_config


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance ready for ASGI server.
    """
    settings = config.get_settings()
    logging_config.configure_logging(settings.log_level, settings.log_json)

    app = fastapi.FastAPI(title="GeoPackage Mosaic", version=__version__)
    app.include_router(mosaics.router)

    @app.get("/health")
    async def health() -> dict[str, str]:  # type: ignore[misc]
        """Health check endpoint for monitoring and load balancers.

        Returns:
            Dictionary with status "ok" if the service is running.
        """
        return {"status": "ok"}

    return app


app = create_app()
