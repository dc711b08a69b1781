"""
Tests — Building Classification
================================
Unit tests for :mod:`palm_prep.classify`.
"""

from __future__ import annotations

import geopandas as gpd
import numpy as np
import pytest
from rasterio.crs import CRS as RioCRS
from rasterio.transform import from_bounds
from shapely.geometry import box

from palm_prep.classify import (
    BRIDGE_TYPE,
    TYPE_COLUMN,
    YEAR_COLUMN,
    assign_building_types,
    classify_building,
    extract_zonal_max,
)
from palm_prep.config import BuildingConfig
from palm_prep.raster import RasterLayer

RESIDENTIAL = "31001_1000"
BRIDGE = "53001_1800"
X0, Y0 = 690000, 5334000


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def wsf() -> RasterLayer:
    """10 x 10 one-metre year grid; 0 is nodata."""
    data = np.zeros((10, 10), dtype=np.int32)
    data[7, 3] = 1990
    data[6, 2] = 1985
    data[5, 1] = 2015  # inside the search window but not touched
    return RasterLayer(
        data, from_bounds(X0, Y0, X0 + 10, Y0 + 10, 10, 10), RioCRS.from_epsg(25832), nodata=0
    )


def _frame(*geoms, function=None) -> gpd.GeoDataFrame:
    codes = function or [RESIDENTIAL] * len(geoms)
    return gpd.GeoDataFrame({"function": codes}, geometry=list(geoms), crs="EPSG:25832")


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class TestClassifyBuilding:
    @pytest.mark.parametrize("year", [-1, 0, 1985, 1990, 2010, None])
    def test_bridge_wins_regardless_of_year(self, year: object) -> None:
        assert classify_building(BRIDGE, year) == BRIDGE_TYPE

    @pytest.mark.parametrize(
        ("year", "expected"),
        [(-1, 1), (1985, 1), (1986, 2), (1990, 2), (2000, 2), (2001, 3), (2019, 3)],
    )
    def test_residential(self, year: int, expected: int) -> None:
        assert classify_building(RESIDENTIAL, year) == expected

    @pytest.mark.parametrize(
        ("year", "expected"),
        [(1985, 4), (1995, 5), (2015, 6)],
    )
    def test_other(self, year: int, expected: int) -> None:
        assert classify_building("31001_2000", year) == expected

    @pytest.mark.parametrize("year", [0, None, float("nan"), 1500])
    def test_unmatched_year_falls_back_to_pre_1986(self, year: object) -> None:
        assert classify_building(RESIDENTIAL, year) == 1
        assert classify_building("other_code", year) == 4

    def test_missing_function_code_is_other(self) -> None:
        assert classify_building(None, 1990) == 5

    def test_custom_codes(self) -> None:
        config = BuildingConfig(bridge_code="B", residential_code="R")
        assert classify_building("B", 1990, config) == 7
        assert classify_building("R", 1990, config) == 2
        assert classify_building(RESIDENTIAL, 1990, config) == 5


# ---------------------------------------------------------------------------
# Zonal maximum
# ---------------------------------------------------------------------------


class TestExtractZonalMax:
    def test_touched_cells_count(self, wsf: RasterLayer) -> None:
        # no cell centre falls inside this footprint
        footprint = box(X0 + 2.6, Y0 + 2.6, X0 + 3.4, Y0 + 3.4)
        result = extract_zonal_max(_frame(footprint), wsf)
        assert result.name == YEAR_COLUMN
        assert result.iloc[0] == 1990

    def test_no_valid_cell_gives_zero(self, wsf: RasterLayer) -> None:
        result = extract_zonal_max(_frame(box(X0 + 8.2, Y0 + 8.2, X0 + 8.8, Y0 + 8.8)), wsf)
        assert result.iloc[0] == 0

    def test_outside_raster_gives_zero(self, wsf: RasterLayer) -> None:
        result = extract_zonal_max(_frame(box(X0 + 50, Y0 + 50, X0 + 51, Y0 + 51)), wsf)
        assert result.iloc[0] == 0

    def test_features_are_reprojected(self, wsf: RasterLayer) -> None:
        frame = _frame(box(X0 + 2.6, Y0 + 2.6, X0 + 3.4, Y0 + 3.4)).to_crs("EPSG:4326")
        assert extract_zonal_max(frame, wsf).iloc[0] == 1990

    def test_index_is_preserved(self, wsf: RasterLayer) -> None:
        frame = _frame(
            box(X0 + 2.6, Y0 + 2.6, X0 + 3.4, Y0 + 3.4),
            box(X0 + 8.2, Y0 + 8.2, X0 + 8.8, Y0 + 8.8),
        )
        frame.index = [10, 20]
        result = extract_zonal_max(frame, wsf)
        assert list(result.index) == [10, 20]
        assert list(result) == [1990, 0]

    def test_nodata_and_nan_cells_are_ignored(self) -> None:
        data = np.full((10, 10), 1990.0, dtype=np.float32)
        data[6, 2] = -9999.0
        data[6, 3] = np.nan
        data[7, 2] = 2005.0
        layer = RasterLayer(
            data, from_bounds(X0, Y0, X0 + 10, Y0 + 10, 10, 10), RioCRS.from_epsg(25832), nodata=-9999.0
        )
        result = extract_zonal_max(_frame(box(X0 + 2.6, Y0 + 2.6, X0 + 3.4, Y0 + 3.4)), layer)
        assert result.iloc[0] == 2005


class TestAssignBuildingTypes:
    def test_columns_added(self, wsf: RasterLayer) -> None:
        frame = _frame(
            box(X0 + 2.6, Y0 + 2.6, X0 + 3.4, Y0 + 3.4),
            box(X0 + 8.2, Y0 + 8.2, X0 + 8.8, Y0 + 8.8),
            function=[RESIDENTIAL, "31001_2000"],
        )
        out = assign_building_types(frame, wsf)
        assert list(out[YEAR_COLUMN]) == [1990, 0]
        assert list(out[TYPE_COLUMN]) == [2, 4]
        assert out[TYPE_COLUMN].dtype == np.int64
        assert TYPE_COLUMN not in frame.columns

    def test_without_wsf(self) -> None:
        out = assign_building_types(_frame(box(0, 0, 1, 1)), None)
        assert list(out[YEAR_COLUMN]) == [0]
        assert list(out[TYPE_COLUMN]) == [1]
