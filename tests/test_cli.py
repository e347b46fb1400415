"""Tests for the gpkg-mosaic command line.

Exit codes distinguish success (0), invalid invocations (2), pipeline
failures (1) and interrupts (130).
"""

from __future__ import annotations

import pathlib
from typing import TYPE_CHECKING, Any

import pytest

from gpkg_mosaic import cli
from gpkg_mosaic.core import config

if TYPE_CHECKING:
    from collections.abc import Callable

    from conftest import FakeGdal

Workspace = tuple[pathlib.Path, pathlib.Path]


@pytest.fixture(autouse=True)
def _thread_settings(
    monkeypatch: pytest.MonkeyPatch, settings: config.Settings
) -> None:
    """Run the CLI with thread workers and leave signal handlers alone."""
    monkeypatch.setattr(config, "get_settings", lambda: settings)
    monkeypatch.setattr(cli.signal, "signal", lambda *args: None)


def test_mosaic_command(
    fake_gdal: FakeGdal,
    workspace: Workspace,
    make_unit: Callable[..., pathlib.Path],
    capsys: pytest.CaptureFixture[str],
) -> None:
    input_dir, output_dir = workspace
    make_unit(input_dir, "a", 1, (0, 0, 1, 1))
    make_unit(input_dir, "b", 2, (1, 0, 2, 1))

    code = cli.main(
        ["mosaic", str(input_dir), str(output_dir), "out.tif", "--workers", "2"]
    )

    assert code == cli.EXIT_OK
    final = output_dir / "out_compressed.tif"
    assert final.is_file()
    assert str(final) in capsys.readouterr().out


def test_convert_command(
    fake_gdal: FakeGdal,
    tmp_path: pathlib.Path,
    make_unit: Callable[..., pathlib.Path],
) -> None:
    unit = make_unit(tmp_path / "in", "a", 1, (0, 0, 1, 1), epsg=None)
    target = tmp_path / "tiles"
    target.mkdir()

    code = cli.main(["convert", str(unit), str(target), "--epsg", "4326"])

    assert code == cli.EXIT_OK
    assert len(list(target.glob("a_*_compressed.tif"))) == 1


def test_missing_directory_is_usage_error(
    tmp_path: pathlib.Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = cli.main(["mosaic", str(tmp_path / "nope"), str(tmp_path), "out.tif"])
    assert code == cli.EXIT_USAGE
    assert "Input directory does not exist" in capsys.readouterr().err


def test_blocked_tile_directory_is_usage_error(
    fake_gdal: FakeGdal,
    workspace: Workspace,
    make_unit: Callable[..., pathlib.Path],
    capsys: pytest.CaptureFixture[str],
) -> None:
    input_dir, output_dir = workspace
    make_unit(input_dir, "a", 1, (0, 0, 1, 1))
    (output_dir / "temp").write_text("not a directory")

    code = cli.main(["mosaic", str(input_dir), str(output_dir), "out.tif"])

    assert code == cli.EXIT_USAGE
    assert "Cannot create tile directory" in capsys.readouterr().err


@pytest.mark.parametrize("workers", ["0", "-1", "four"])
def test_malformed_worker_count(tmp_path: pathlib.Path, workers: str) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["mosaic", str(tmp_path), str(tmp_path), "out.tif", "--workers", workers])
    assert excinfo.value.code == cli.EXIT_USAGE


def test_pipeline_failure_exit_code(
    fake_gdal: FakeGdal,
    workspace: Workspace,
    make_unit: Callable[..., pathlib.Path],
    capsys: pytest.CaptureFixture[str],
) -> None:
    input_dir, output_dir = workspace
    make_unit(input_dir, "nocrs", 1, (0, 0, 1, 1), epsg=None)

    code = cli.main(["mosaic", str(input_dir), str(output_dir), "out.tif"])

    assert code == cli.EXIT_FAILED
    err = capsys.readouterr().err
    assert "CRSResolutionError" in err
    assert "nocrs.gpkg" in err


def test_interrupt_exit_code(
    fake_gdal: FakeGdal,
    workspace: Workspace,
    make_unit: Callable[..., pathlib.Path],
) -> None:
    input_dir, output_dir = workspace
    make_unit(input_dir, "a", 1, (0, 0, 1, 1))
    fake_gdal.interrupt_on.add("a")

    code = cli.main(["mosaic", str(input_dir), str(output_dir), "out.tif"])

    assert code == cli.EXIT_INTERRUPTED
    assert (output_dir / "temp").is_dir()
    assert not (output_dir / "out_compressed.tif").exists()


def test_sigterm_handler_installed(
    monkeypatch: pytest.MonkeyPatch,
    fake_gdal: FakeGdal,
    workspace: Workspace,
    make_unit: Callable[..., pathlib.Path],
) -> None:
    installed: list[Any] = []
    monkeypatch.setattr(cli.signal, "signal", lambda *args: installed.append(args))
    input_dir, output_dir = workspace
    make_unit(input_dir, "a", 1, (0, 0, 1, 1))

    cli.main(["mosaic", str(input_dir), str(output_dir), "out.tif"])

    assert installed == [(cli.signal.SIGTERM, cli.signal.default_int_handler)]
