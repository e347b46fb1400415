"""Execution wrapper for GDAL/OGR command-line utilities.

Every raster and vector operation in the pipeline is delegated to a GDAL
command-line tool (``ogrinfo``, ``gdal_rasterize``, ``gdal_translate``,
``gdal_merge.py``) executed as a subprocess. This module runs those tools,
captures their output, and turns a non-zero exit status into a
CommandError carrying the tool's stderr.

Example:
    Inspect a GeoPackage:
        >>> from gpkg_mosaic.utils.gdal_helpers import run_command
        >>> summary = run_command(["ogrinfo", "-so", "parcels.gpkg"])

    Handle a failing tool:
        >>> try:
        ...     run_command(["gdal_translate", "missing.tif", "out.tif"])
        ... except CommandError as e:
        ...     print(f"Command failed: {e}")
"""

from __future__ import annotations

import subprocess
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Iterable

logger = structlog.get_logger(__name__)


class CommandError(RuntimeError):
    """Exception raised when a GDAL/OGR subprocess command fails.

    The message is the stderr output of the failed tool, or a generic
    text when the tool wrote nothing to stderr.
    """


def creation_options(options: Iterable[str]) -> list[str]:
    """Expand ``KEY=VALUE`` strings into repeated ``-co`` arguments."""
    args: list[str] = []
    for option in options:
        args.extend(("-co", option))
    return args


def run_command(
    command: Iterable[str | pathlib.Path],
    workdir: pathlib.Path | None = None,
) -> str:
    """Execute a command and raise on non-zero exit.

    Args:
        command: Iterable arguments to execute (e.g., ["gdal_translate", ...]).
        workdir: Optional working directory for the command execution.

    Returns:
        The command's standard output.

    Raises:
        CommandError: if the command exits with a non-zero status code.
            The exception message contains the stderr output from the command.
    """
    args = [str(part) for part in command]
    logger.debug("gdal.command", tool=args[0] if args else None, args=args)
    result = subprocess.run(
        args,
        cwd=workdir,
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        raise CommandError(result.stderr.strip() or "Unknown command failure")
    return result.stdout
