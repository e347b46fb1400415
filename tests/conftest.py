"""Shared fixtures: a fake GDAL toolchain and fake vector units.

The GDAL command-line tools are replaced by FakeGdal, installed over
gdal_helpers.run_command. Fake units are small JSON documents carrying
what the tools would read from a GeoPackage (classification value,
extent, EPSG code); every fake tool writes JSON as well, so tests can
follow a value from unit to tile to mosaic to final artifact.

The thread worker backend is used throughout so that monkeypatches are
visible inside dispatcher workers.
"""

from __future__ import annotations

import json
import pathlib
import threading
from typing import TYPE_CHECKING, Any

import pytest

from gpkg_mosaic.core import config
from gpkg_mosaic.db import models
from gpkg_mosaic.utils import gdal_helpers

if TYPE_CHECKING:
    import types
    from collections.abc import Callable, Iterable


WKT2_TEMPLATE = """INFO: Open of `{path}'
      using driver `GPKG' successful.

Layer name: parcels
Geometry: Polygon
Feature Count: 42
Layer SRS WKT:
PROJCRS["ETRS89 / UTM zone 32N",
    BASEGEOGCRS["ETRS89",
        DATUM["European Terrestrial Reference System 1989"],
        ID["EPSG",4258]],
    CONVERSION["UTM zone 32N",
        METHOD["Transverse Mercator",
            ID["EPSG",9807]]],
    ID["EPSG",{epsg}]]
Data axis to CRS axis mapping: 1,2
FID Column = fid
Geometry Column = geom
class_id: Integer (0.0)
"""

NO_SRS_SUMMARY = """INFO: Open of `{path}'
      using driver `GPKG' successful.

Layer name: parcels
Geometry: Polygon
Feature Count: 42
Layer SRS WKT:
(unknown)
class_id: Integer (0.0)
"""


def _read_json(path: str | pathlib.Path) -> dict[str, Any]:
    return json.loads(pathlib.Path(path).read_text(encoding="utf-8"))


def _write_json(path: str | pathlib.Path, data: dict[str, Any]) -> None:
    pathlib.Path(path).write_text(json.dumps(data), encoding="utf-8")


def _option_values(args: list[str], flag: str) -> list[str]:
    return [args[i + 1] for i, arg in enumerate(args[:-1]) if arg == flag]


class FakeGdal:
    """Stand-in for the GDAL utilities used by the pipeline.

    Attributes:
        calls: Every command received, as lists of strings.
        fail_rasterize: Unit stems whose rasterization fails.
        fail_translate: Substrings of source paths whose encoding fails.
        interrupt_on: Unit stems whose rasterization raises
            KeyboardInterrupt.
        fail_merge: Make the merge command fail.
        merge_inputs: Tile paths read from the last merge option file.
        tiles_on_disk_at_merge: Finished tiles present when merge ran.
        output_existed_at_merge: Whether the merge output was already on
            disk, one entry per merge call.
        on_rasterize: Optional hook called with the unit path.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.fail_rasterize: set[str] = set()
        self.fail_translate: set[str] = set()
        self.interrupt_on: set[str] = set()
        self.fail_merge = False
        self.merge_inputs: list[str] = []
        self.tiles_on_disk_at_merge = 0
        self.output_existed_at_merge: list[bool] = []
        self.on_rasterize: Callable[[pathlib.Path], None] | None = None
        self._lock = threading.Lock()

    def tools(self) -> list[str]:
        return [call[0] for call in self.calls]

    def __call__(
        self,
        command: Iterable[str | pathlib.Path],
        workdir: pathlib.Path | None = None,
    ) -> str:
        args = [str(part) for part in command]
        with self._lock:
            self.calls.append(args)
        tool = args[0]
        if tool == "ogrinfo":
            return self._ogrinfo(args)
        if tool == "gdal_rasterize":
            return self._rasterize(args)
        if tool == "gdal_translate":
            return self._translate(args)
        if tool.endswith("gdal_merge.py"):
            return self._merge(args)
        raise gdal_helpers.CommandError(f"{tool}: command not found")

    def _ogrinfo(self, args: list[str]) -> str:
        path = args[-1]
        epsg = _read_json(path).get("epsg")
        if epsg is None:
            return NO_SRS_SUMMARY.format(path=path)
        return WKT2_TEMPLATE.format(path=path, epsg=epsg)

    def _rasterize(self, args: list[str]) -> str:
        unit_path, out_path = pathlib.Path(args[-2]), args[-1]
        if self.on_rasterize is not None:
            self.on_rasterize(unit_path)
        if unit_path.stem in self.interrupt_on:
            raise KeyboardInterrupt
        if unit_path.stem in self.fail_rasterize:
            raise gdal_helpers.CommandError("ERROR 1: Failed to rasterize")
        unit = _read_json(unit_path)
        _write_json(
            out_path,
            {
                "value": unit["value"],
                "bbox": unit["bbox"],
                "srs": _option_values(args, "-a_srs")[0],
                "nodata": int(_option_values(args, "-a_nodata")[0]),
                "attribute": _option_values(args, "-a")[0],
            },
        )
        return ""

    def _translate(self, args: list[str]) -> str:
        source, target = args[-2], args[-1]
        if any(marker in source for marker in self.fail_translate):
            raise gdal_helpers.CommandError("ERROR 1: Failed to encode")
        data = _read_json(source)
        data["co"] = _option_values(args, "-co")
        _write_json(target, data)
        return ""

    def _merge(self, args: list[str]) -> str:
        self.output_existed_at_merge.append(
            pathlib.Path(_option_values(args, "-o")[0]).exists()
        )
        option_file = pathlib.Path(_option_values(args, "--optfile")[0])
        self.merge_inputs = [
            line.strip().strip('"')
            for line in option_file.read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]
        if self.merge_inputs:
            tile_dir = pathlib.Path(self.merge_inputs[0]).parent
            self.tiles_on_disk_at_merge = len(
                list(tile_dir.glob("*_compressed.tif"))
            )
        if self.fail_merge:
            raise gdal_helpers.CommandError("ERROR 4: Unable to open tile")
        tiles = [_read_json(path) for path in self.merge_inputs]
        bbox = models.union_bbox([tuple(tile["bbox"]) for tile in tiles])
        _write_json(
            _option_values(args, "-o")[0],
            {
                "values": [tile["value"] for tile in tiles],
                "bbox": list(bbox) if bbox else None,
                "nodata": int(_option_values(args, "-a_nodata")[0]),
                "init": int(_option_values(args, "-init")[0]),
            },
        )
        return ""


class FakeReader:
    """Mock rio-tiler Reader returning the bbox stored in a fake tile."""

    def __init__(self, input: str, **kwargs: Any) -> None:
        self.input = input

    def __enter__(self) -> FakeReader:
        self.bounds = tuple(_read_json(self.input)["bbox"])
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: types.TracebackType | None,
    ) -> None:
        pass


@pytest.fixture
def fake_gdal(monkeypatch: pytest.MonkeyPatch) -> FakeGdal:
    """Install the fake toolchain and the fake rio-tiler reader."""
    fake = FakeGdal()
    monkeypatch.setattr(gdal_helpers, "run_command", fake)
    monkeypatch.setattr("rio_tiler.io.Reader", FakeReader)
    return fake


@pytest.fixture
def settings() -> config.Settings:
    return config.Settings(worker_backend="thread")


def _make_unit(
    directory: pathlib.Path,
    name: str,
    value: int,
    bbox: tuple[float, float, float, float],
    epsg: int | None = 25832,
) -> pathlib.Path:
    """Write a fake GeoPackage readable by FakeGdal."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{name}.gpkg"
    _write_json(path, {"value": value, "bbox": list(bbox), "epsg": epsg})
    return path


@pytest.fixture
def make_unit() -> Callable[..., pathlib.Path]:
    """Factory writing fake GeoPackages into a directory."""
    return _make_unit


@pytest.fixture
def workspace(tmp_path: pathlib.Path) -> tuple[pathlib.Path, pathlib.Path]:
    """Empty input and output directories."""
    input_dir = tmp_path / "gpkg"
    output_dir = tmp_path / "out"
    input_dir.mkdir()
    output_dir.mkdir()
    return input_dir, output_dir
