"""Run registry for mosaic runs started over HTTP."""

from __future__ import annotations

import functools
import threading
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Iterable

    from gpkg_mosaic.db import models


class RunRepositoryProtocol(Protocol):
    """Protocol interface for storing and retrieving run records."""

    def add(self, run: models.MosaicRun) -> models.MosaicRun: ...

    def get(self, run_id: str) -> models.MosaicRun | None: ...

    def all(self) -> Iterable[models.MosaicRun]: ...


class InMemoryRunRepository(RunRepositoryProtocol):
    """Process-local store of run records.

    Records are lost when the process exits. Access is serialised because
    FastAPI runs synchronous endpoints on a thread pool.
    """

    def __init__(self) -> None:
        self._store: dict[str, models.MosaicRun] = {}
        self._lock = threading.Lock()

    def add(self, run: models.MosaicRun) -> models.MosaicRun:
        """Add or replace a run record.

        Args:
            run: Record to store.

        Returns:
            The stored record.
        """
        with self._lock:
            self._store[run.id] = run
        return run

    def get(self, run_id: str) -> models.MosaicRun | None:
        with self._lock:
            return self._store.get(run_id)

    def all(self) -> Iterable[models.MosaicRun]:
        """Get all records, newest first."""
        with self._lock:
            runs = list(self._store.values())
        return sorted(runs, key=lambda run: run.created_at, reverse=True)


@functools.lru_cache
def get_run_repository() -> RunRepositoryProtocol:
    """Process-wide repository shared by all requests."""
    return InMemoryRunRepository()
