"""
Tests — Shared exceptions and validators
=========================================
Unit tests for :mod:`shared.python.exceptions` and
:mod:`shared.python.validators`.
"""

from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest

from shared.python.base_tool import GeoTool
from shared.python.exceptions import (
    AcquisitionFailure,
    ColumnNotFoundError,
    CRSError,
    EmptyResultError,
    GeometryRepairFailed,
    NoIntersectingTiles,
    OutputWriteError,
    PalmPrepError,
    RasterError,
    ValidationError,
)
from shared.python.validators import Validators


class TestExceptionHierarchy:
    @pytest.mark.parametrize(
        "exc",
        [
            ValidationError("x"),
            ColumnNotFoundError("a", ["b"]),
            CRSError(None),
            AcquisitionFailure("t.tif", "https://x/t.tif", 404),
            GeometryRepairFailed([1], "ogr2ogr"),
            EmptyResultError("x"),
            NoIntersectingTiles("WSF", (0, 0, 1, 1)),
            RasterError("x"),
            OutputWriteError("/tmp/x", "denied"),
        ],
    )
    def test_all_derive_from_root(self, exc: PalmPrepError) -> None:
        assert isinstance(exc, PalmPrepError)
        assert exc.message == str(exc)

    def test_column_not_found_lists_available(self) -> None:
        exc = ColumnNotFoundError("function", ["gml_id", "measuredHeight"])
        assert "'function'" in exc.message
        assert "'measuredHeight'" in exc.message
        assert isinstance(exc, ValidationError)

    def test_repair_failure_truncates_index_list(self) -> None:
        exc = GeometryRepairFailed(range(25), "ogr2ogr -nlt MULTIPOLYGON")
        assert "0, 1, 2, 3, 4, 5, 6, 7, 8, 9 ..." in exc.message
        assert "10," not in exc.message
        assert "`ogr2ogr -nlt MULTIPOLYGON`" in exc.message
        assert exc.indices == list(range(25))

    def test_acquisition_failure_message(self) -> None:
        exc = AcquisitionFailure("a.gml", "https://x/a.gml", 503, "Service Unavailable")
        assert "HTTP 503" in exc.message
        assert "https://x/a.gml" in exc.message


class TestValidators:
    def test_file_exists(self, tmp_path: Path) -> None:
        f = tmp_path / "a.txt"
        f.write_text("x")
        Validators.assert_file_exists(f)
        with pytest.raises(ValidationError):
            Validators.assert_file_exists(tmp_path / "missing.txt")
        with pytest.raises(ValidationError):
            Validators.assert_file_exists(tmp_path)

    def test_directory_exists(self, tmp_path: Path) -> None:
        Validators.assert_directory_exists(tmp_path)
        with pytest.raises(ValidationError):
            Validators.assert_directory_exists(tmp_path / "nope")

    def test_output_dir_is_created(self, tmp_path: Path) -> None:
        target = tmp_path / "a" / "b"
        Validators.assert_output_dir_writable(target)
        assert target.is_dir()

    @pytest.mark.parametrize("crs", ["EPSG:25832", 4326, "+proj=longlat +datum=WGS84"])
    def test_crs_valid(self, crs: object) -> None:
        Validators.assert_crs_valid(crs)

    def test_crs_none(self) -> None:
        with pytest.raises(CRSError) as exc_info:
            Validators.assert_crs_valid(None)
        assert exc_info.value.crs_string is None

    def test_crs_garbage(self) -> None:
        with pytest.raises(CRSError):
            Validators.assert_crs_valid("EPSG:99999999")

    def test_columns_exist(self) -> None:
        df = pd.DataFrame({"function": [1], "measuredHeight": [2.0]})
        Validators.assert_columns_exist(df, ["function"])
        with pytest.raises(ColumnNotFoundError):
            Validators.assert_columns_exist(df, ["function", "year"])

    def test_polygonal(self) -> None:
        Validators.assert_polygonal(["Polygon", "MultiPolygon"])
        with pytest.raises(ValidationError):
            Validators.assert_polygonal(["Polygon", "LineString"])
        with pytest.raises(ValidationError):
            Validators.assert_polygonal([])


class _Recorder(GeoTool):
    def __init__(self, tmp_path: Path, fail_in: str | None = None) -> None:
        super().__init__(tmp_path / "in.json", tmp_path / "out")
        self.fail_in = fail_in
        self.calls: list[str] = []

    def validate_inputs(self) -> None:
        self.calls.append("validate")
        if self.fail_in == "validate":
            raise ValidationError("bad input")

    def process(self) -> None:
        with self.stage("first"):
            self.calls.append("first")
        with self.stage("second"):
            if self.fail_in == "second":
                raise EmptyResultError("nothing")
            self.calls.append("second")


class TestGeoTool:
    def test_run_order_and_timings(self, tmp_path: Path) -> None:
        tool = _Recorder(tmp_path)
        tool.run()
        assert tool.calls == ["validate", "first", "second"]
        assert list(tool.timings) == ["validate", "first", "second"]
        assert all(t >= 0 for t in tool.timings.values())

    def test_validation_failure_skips_process(self, tmp_path: Path) -> None:
        tool = _Recorder(tmp_path, fail_in="validate")
        with pytest.raises(ValidationError):
            tool.run()
        assert tool.calls == ["validate"]
        assert tool.timings == {}

    def test_failed_stage_is_not_timed(self, tmp_path: Path) -> None:
        tool = _Recorder(tmp_path, fail_in="second")
        with pytest.raises(EmptyResultError):
            tool.run()
        assert list(tool.timings) == ["validate", "first"]

    def test_repr(self, tmp_path: Path) -> None:
        assert repr(_Recorder(tmp_path)).startswith("_Recorder(input_path=")
