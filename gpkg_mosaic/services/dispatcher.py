"""Bounded parallel dispatch of per-unit conversions.

The Dispatcher runs the converter over every discovered unit with at most
``worker_count`` conversions in flight. Each unit becomes one immutable
ConversionJob handed to exactly one worker; workers share nothing but the
tile directory, where each writes a name it alone owns.

run_all() is the barrier in front of the aggregator: it returns only when
every unit has been attempted, with the tiles and failures collected from
the workers' UnitResult values. Under the "fail-fast" policy collection
stops at the first failure; queued units are cancelled and in-flight ones
are not waited for. Under "best-effort" every unit is attempted. Deciding
what the failures mean for the run is left to the caller.

Example:
    >>> from pathlib import Path
    >>> from gpkg_mosaic.core.config import Settings
    >>> from gpkg_mosaic.db.models import VectorUnit
    >>> from gpkg_mosaic.services.dispatcher import Dispatcher
    >>> dispatcher = Dispatcher(Path("/out/temp"), Settings(), worker_count=4)
    >>> report = dispatcher.run_all([VectorUnit(Path("a.gpkg"))])
    >>> report.ok, len(report.tiles)
"""

from __future__ import annotations

import concurrent.futures
from typing import TYPE_CHECKING

import structlog

from gpkg_mosaic.core import config as config_module
from gpkg_mosaic.core import errors
from gpkg_mosaic.db import models
from gpkg_mosaic.services import converter

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Sequence

logger = structlog.get_logger(__name__)


def _make_executor(
    backend: config_module.WorkerBackend,
    max_workers: int,
) -> concurrent.futures.Executor:
    if backend == "thread":
        return concurrent.futures.ThreadPoolExecutor(max_workers=max_workers)
    return concurrent.futures.ProcessPoolExecutor(max_workers=max_workers)


class Dispatcher:
    """Runs conversions for a set of units behind a single barrier.

    Args:
        target_dir: Existing tile directory shared by all workers.
        settings: Run settings; per-job values are copied out of it.
        worker_count: Maximum concurrent conversions; defaults to
            settings.worker_count.
        epsg_override: CRS override shared by every unit, or None to
            detect each unit's CRS individually.
        failure_policy: Overrides settings.failure_policy when given.
    """

    def __init__(
        self,
        target_dir: pathlib.Path,
        settings: config_module.Settings,
        worker_count: int | None = None,
        epsg_override: int | None = None,
        failure_policy: config_module.FailurePolicy | None = None,
    ) -> None:
        self.target_dir = target_dir
        self.settings = settings
        self.worker_count = (
            settings.worker_count if worker_count is None else worker_count
        )
        self.epsg_override = epsg_override
        self.failure_policy = failure_policy or settings.failure_policy
        if self.worker_count < 1:
            raise errors.UsageError(
                f"Worker count must be a positive integer, got {self.worker_count}"
            )

    def jobs(self, units: Sequence[models.VectorUnit]) -> list[converter.ConversionJob]:
        """Build one immutable job per unit, applying the shared override."""
        jobs = []
        for unit in units:
            if self.epsg_override is not None and unit.epsg_override is None:
                unit = models.VectorUnit(
                    path=unit.path, epsg_override=self.epsg_override
                )
            jobs.append(
                converter.ConversionJob.from_settings(
                    unit, self.target_dir, self.settings
                )
            )
        return jobs

    @staticmethod
    def _collect(
        future: concurrent.futures.Future[models.UnitResult],
        unit: models.VectorUnit,
    ) -> models.UnitResult:
        """Unwrap a finished future, turning a crashed worker into a failure."""
        try:
            return future.result()
        except concurrent.futures.CancelledError:
            raise
        except Exception as exc:
            return models.UnitResult(
                unit=unit,
                error=errors.ConversionError(
                    f"Worker for {unit.path} crashed: {exc!r}",
                    stage="worker",
                    unit=str(unit.path),
                ),
            )

    def run_all(self, units: Sequence[models.VectorUnit]) -> models.DispatchReport:
        """Convert every unit and wait at the barrier.

        Args:
            units: Units in input order; the report keeps this order.

        Returns:
            DispatchReport with the produced tiles and collected failures.

        Raises:
            InterruptError: If the dispatch is interrupted (Ctrl+C).
        """
        jobs = self.jobs(units)
        log = logger.bind(
            units=len(jobs),
            workers=self.worker_count,
            policy=self.failure_policy,
        )
        log.info("dispatch.start", target_dir=str(self.target_dir))

        results: dict[int, models.UnitResult] = {}
        aborted = False
        executor = _make_executor(
            self.settings.worker_backend,
            min(self.worker_count, max(len(jobs), 1)),
        )
        try:
            futures = {
                executor.submit(converter.run_job, job): index
                for index, job in enumerate(jobs)
            }
            for future in concurrent.futures.as_completed(futures):
                index = futures[future]
                result = self._collect(future, jobs[index].unit)
                results[index] = result
                if not result.ok and self.failure_policy == "fail-fast":
                    aborted = True
                    log.warning(
                        "dispatch.abort",
                        unit=str(result.unit.path),
                        error=str(result.error),
                    )
                    break
        except KeyboardInterrupt as exc:
            aborted = True
            raise errors.InterruptError("Dispatch interrupted") from exc
        finally:
            executor.shutdown(wait=not aborted, cancel_futures=aborted)

        report = models.DispatchReport(aborted=aborted)
        for index in sorted(results):
            result = results[index]
            if result.ok and result.tile is not None:
                report.tiles.append(result.tile)
            else:
                report.failures.append(result)

        log.info(
            "dispatch.barrier",
            tiles=len(report.tiles),
            failures=len(report.failures),
            aborted=aborted,
        )
        return report
