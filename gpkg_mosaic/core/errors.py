"""Error taxonomy for the rasterization and mosaic pipeline.

All pipeline errors derive from MosaicError. UsageError marks a bad
invocation (missing directories, malformed worker count) and is reported
separately from failures raised while the pipeline runs.

Errors carry their context as keyword attributes (``unit``, ``stage``)
while ``args`` holds only the message, so instances survive pickling when
they travel back from process-pool workers.
"""

from __future__ import annotations


class MosaicError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str, *, unit: str | None = None) -> None:
        super().__init__(message)
        self.unit = unit

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else ""


class UsageError(MosaicError):
    """Invalid invocation: missing paths or malformed arguments."""


class CRSResolutionError(MosaicError):
    """No override was given and no EPSG code could be detected."""


class ConversionError(MosaicError):
    """A rasterize or encode step failed.

    Attributes:
        stage: Pipeline stage that failed ("rasterize", "encode",
            "final-compress" or "cleanup").
        unit: Source unit path, when the failure belongs to one unit.
    """

    def __init__(
        self,
        message: str,
        *,
        stage: str | None = None,
        unit: str | None = None,
    ) -> None:
        super().__init__(message, unit=unit)
        self.stage = stage

    def __str__(self) -> str:
        prefix = f"[{self.stage}] " if self.stage else ""
        return f"{prefix}{self.message}"


class AggregationError(MosaicError):
    """The tile set was empty, unreadable, or could not be merged."""


class InterruptError(MosaicError):
    """The run was cancelled by an external signal."""
