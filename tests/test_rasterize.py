"""
Tests — Building Rasterization & Land-Cover Reclassification
=============================================================
Unit tests for :mod:`palm_prep.rasterize` and :mod:`palm_prep.landcover`.
"""

from __future__ import annotations

import geopandas as gpd
import numpy as np
import pytest
from rasterio.crs import CRS as RioCRS
from rasterio.transform import from_bounds
from shapely.geometry import box

from palm_prep.align import build_reference_grid
from palm_prep.aoi import AreaOfInterest
from palm_prep.landcover import reclassify, reclassify_land_cover
from palm_prep.raster import GridSpec, RasterLayer
from palm_prep.rasterize import rasterize_bridge_layers, rasterize_building_layers, rasterize_buildings
from shared.python.exceptions import ColumnNotFoundError

NODATA = -9999.0


@pytest.fixture()
def grid(square_aoi: AreaOfInterest) -> GridSpec:
    return build_reference_grid(square_aoi, "EPSG:25832", 10)


@pytest.fixture()
def buildings() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {
            "ID": [1, 2, 3],
            "palm_type": [2, 5, 1],
            "measuredHeight": [10.0, 25.0, None],
        },
        geometry=[
            box(1012, 2012, 1028, 2028),
            box(1022, 2012, 1038, 2028),  # shares column 2 with ID 1
            box(1062, 2062, 1068, 2068),
        ],
        crs="EPSG:25832",
    )


class TestRasterizeBuildings:
    def test_contested_cells_take_the_maximum(
        self, buildings: gpd.GeoDataFrame, grid: GridSpec
    ) -> None:
        layer = rasterize_buildings(buildings, grid, "measuredHeight")
        assert layer.data.shape == grid.shape
        assert layer.data[6, 1] == 10
        assert layer.data[6, 2] == 25
        assert layer.data[7, 3] == 25

    def test_feature_order_does_not_matter(
        self, buildings: gpd.GeoDataFrame, grid: GridSpec
    ) -> None:
        forward = rasterize_buildings(buildings, grid, "measuredHeight")
        backward = rasterize_buildings(buildings.iloc[::-1], grid, "measuredHeight")
        assert np.array_equal(forward.data, backward.data)

    def test_null_values_are_skipped(self, buildings: gpd.GeoDataFrame, grid: GridSpec) -> None:
        layer = rasterize_buildings(buildings, grid, "measuredHeight")
        assert layer.data[2, 6] == NODATA
        assert rasterize_buildings(buildings, grid, "ID").data[2, 6] == 3

    def test_untouched_cells_are_nodata(self, buildings: gpd.GeoDataFrame, grid: GridSpec) -> None:
        layer = rasterize_buildings(buildings, grid, "ID")
        assert layer.data[0, 9] == NODATA
        assert layer.nodata == NODATA
        assert layer.data.dtype == np.float32

    def test_empty_frame(self, buildings: gpd.GeoDataFrame, grid: GridSpec) -> None:
        layer = rasterize_buildings(buildings.iloc[0:0], grid, "ID")
        assert np.all(layer.data == NODATA)

    def test_missing_column(self, buildings: gpd.GeoDataFrame, grid: GridSpec) -> None:
        with pytest.raises(ColumnNotFoundError):
            rasterize_buildings(buildings, grid, "roof_height")

    def test_building_layer_names(self, buildings: gpd.GeoDataFrame, grid: GridSpec) -> None:
        layers = rasterize_building_layers(buildings, grid)
        assert set(layers) == {"building_type", "building_id", "building_height"}
        assert layers["building_type"].data[6, 2] == 5

    def test_bridge_layer_names(self, buildings: gpd.GeoDataFrame, grid: GridSpec) -> None:
        layers = rasterize_bridge_layers(buildings.drop(columns="palm_type"), grid)
        assert set(layers) == {"bridges_id", "bridges_height"}


class TestLandCover:
    @pytest.fixture()
    def lc(self) -> RasterLayer:
        data = np.array(
            [[4, 5, 8, 9], [10, 11, 2, 12], [6, 1, 3, NODATA]], dtype=np.float32
        )
        return RasterLayer(data, from_bounds(0, 0, 4, 3, 4, 3), RioCRS.from_epsg(25832), NODATA)

    def test_vegetation(self, lc: RasterLayer) -> None:
        veg = reclassify_land_cover(lc)["vegetation_type"]
        assert veg.data.tolist() == [[3, 1, 1, 16], [17, 7, 255, 255], [255, 255, 255, 255]]
        assert veg.data.dtype == np.uint8
        assert veg.nodata == 255

    def test_water_and_pavement(self, lc: RasterLayer) -> None:
        layers = reclassify_land_cover(lc)
        assert int((layers["water_type"].data == 1).sum()) == 1
        assert layers["water_type"].data[1, 2] == 1
        assert layers["pavement_type"].data[1, 3] == 1
        assert layers["pavement_type"].data[2, 0] == 13

    def test_nodata_is_never_mapped(self, lc: RasterLayer) -> None:
        out = reclassify(lc, {int(NODATA): 1})
        assert out.data[2, 3] == 255

    def test_same_grid(self, lc: RasterLayer) -> None:
        for layer in reclassify_land_cover(lc).values():
            assert layer.transform == lc.transform
            assert layer.crs == lc.crs
