"""Mosaic run and single-unit conversion API endpoints.

This module exposes the pipeline over HTTP. Runs execute synchronously in
FastAPI's worker thread pool; each finished run, successful or not, is
recorded in the run registry and can be fetched again by id. Invalid
requests (missing directories, bad worker count) answer 400; failures
inside the pipeline answer 422 with the failing stage and unit.

Example:
    Start a run:
        >>> response = client.post(
        ...     "/api/mosaics",
        ...     json={
        ...         "input_dir": "/data/gpkg",
        ...         "output_dir": "/data/out",
        ...         "output_filename": "landcover.tif",
        ...         "workers": 4,
        ...     },
        ... )
        >>> response.json()["final_path"]
        >>> # Returns: "/data/out/landcover_compressed.tif"

    Convert one unit:
        >>> response = client.post(
        ...     "/api/units/convert",
        ...     json={"input_path": "/data/gpkg/a.gpkg", "target_dir": "/tmp"},
        ... )
"""

from __future__ import annotations

import dataclasses
import pathlib
import uuid
from typing import Any

import fastapi
import pydantic
import structlog

from gpkg_mosaic.core import config
from gpkg_mosaic.core import errors
from gpkg_mosaic.db import models
from gpkg_mosaic.db import repository
from gpkg_mosaic.services import converter, pipeline

router = fastapi.APIRouter(prefix="/api", tags=["mosaics"])

logger = structlog.get_logger(__name__)


class MosaicRequest(pydantic.BaseModel):
    input_dir: pathlib.Path
    output_dir: pathlib.Path
    output_filename: str
    epsg: int | None = None
    workers: int | None = None
    failure_policy: config.FailurePolicy | None = None


class ConvertRequest(pydantic.BaseModel):
    input_path: pathlib.Path
    target_dir: pathlib.Path
    epsg: int | None = None


def _get_repo() -> repository.RunRepositoryProtocol:
    """Resolve the run registry dependency."""
    return repository.get_run_repository()


def _serialize(run: models.MosaicRun) -> dict[str, Any]:
    """Convert non-JSON values of a run record for the API response."""
    result = dataclasses.asdict(run)
    result["created_at"] = run.created_at.isoformat()
    if run.bbox is not None:
        result["bbox"] = list(run.bbox)
    return result


def _error_detail(exc: errors.MosaicError) -> dict[str, Any]:
    return {
        "error": type(exc).__name__,
        "message": str(exc),
        "stage": getattr(exc, "stage", None),
        "unit": exc.unit,
    }


@router.post("/mosaics")
def create_mosaic(
    request: MosaicRequest,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    repo: repository.RunRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> dict[str, Any]:
    """Run the full pipeline and record the outcome.

    Args:
        request: Directories, output name, optional EPSG override, worker
            count and failure policy.
        settings: Application settings (injected via FastAPI Depends).
        repo: Run registry (injected via FastAPI Depends).

    Returns:
        The recorded run, including final_path, tile_count and bbox.

    Raises:
        HTTPException: 400 for invalid requests, 422 when the pipeline
            fails; the detail carries the run id of the failed record.
    """
    run_id = str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(run_id=run_id)
    run = models.MosaicRun(
        id=run_id,
        input_dir=str(request.input_dir),
        output_dir=str(request.output_dir),
        output_filename=request.output_filename,
        status="failed",
    )
    try:
        result = pipeline.run_pipeline(
            request.input_dir,
            request.output_dir,
            request.output_filename,
            epsg_override=request.epsg,
            worker_count=request.workers,
            settings=settings,
            failure_policy=request.failure_policy,
        )
    except errors.MosaicError as exc:
        run.error = str(exc)
        run.stage = getattr(exc, "stage", None)
        run.unit = exc.unit
        repo.add(run)
        status_code = 400 if isinstance(exc, errors.UsageError) else 422
        raise fastapi.HTTPException(
            status_code=status_code,
            detail={"run_id": run_id, **_error_detail(exc)},
        ) from exc
    finally:
        structlog.contextvars.unbind_contextvars("run_id")

    run.status = "succeeded"
    run.final_path = str(result.final_path)
    run.tile_count = result.tile_count
    run.bbox = result.bbox
    repo.add(run)
    return _serialize(run)


@router.get("/mosaics")
def list_mosaics(
    repo: repository.RunRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> list[dict[str, Any]]:
    """List recorded runs, newest first."""
    return [_serialize(run) for run in repo.all()]


@router.get("/mosaics/{run_id}")
def get_mosaic(
    run_id: str,
    repo: repository.RunRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> dict[str, Any]:
    """Fetch one recorded run.

    Raises:
        HTTPException: If the run is not found (404 status code).
    """
    run = repo.get(run_id)
    if not run:
        raise fastapi.HTTPException(status_code=404, detail="Run not found")
    return _serialize(run)


@router.post("/units/convert")
def convert_unit(
    request: ConvertRequest,
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> dict[str, Any]:
    """Convert one vector unit into a compressed tile.

    Returns:
        Tile descriptor with path, crs and bbox.

    Raises:
        HTTPException: 400 for missing paths, 422 on conversion failure.
    """
    try:
        tile = converter.convert_unit(
            request.input_path,
            request.target_dir,
            epsg_override=request.epsg,
            settings=settings,
        )
    except errors.MosaicError as exc:
        status_code = 400 if isinstance(exc, errors.UsageError) else 422
        raise fastapi.HTTPException(
            status_code=status_code,
            detail=_error_detail(exc),
        ) from exc

    logger.info("api.unit_converted", tile=str(tile.path))
    return {
        "path": str(tile.path),
        "unit": str(tile.unit.path),
        "crs": tile.crs,
        "bbox": list(tile.bbox) if tile.bbox else None,
    }
