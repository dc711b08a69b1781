"""
Tests — Mosaic & Clip
======================
Unit tests for :mod:`palm_prep.raster` and :mod:`palm_prep.mosaic`
using synthetic in-memory rasters and small GeoPackages.
"""

from __future__ import annotations

from pathlib import Path

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from pyproj import CRS
from rasterio.crs import CRS as RioCRS
from rasterio.transform import from_bounds
from shapely.geometry import Point, Polygon, box

from palm_prep.aoi import AreaOfInterest
from palm_prep.mosaic import (
    RawFeatureSet,
    clip_raster,
    load_vector_tiles,
    merge_feature_sets,
    mosaic_rasters,
    read_vector_tile,
)
from palm_prep.raster import RasterLayer
from shared.python.exceptions import CRSError, EmptyResultError, RasterError

UTM = RioCRS.from_epsg(25832)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _layer(value: float, bounds: tuple, shape: tuple = (4, 4), nodata: float = -1.0) -> RasterLayer:
    rows, cols = shape
    data = np.full(shape, value, dtype=np.float32)
    return RasterLayer(data, from_bounds(*bounds, cols, rows), UTM, nodata)


def _write_gpkg(path: Path, geoms: list, crs: str = "EPSG:25832", **columns: list) -> Path:
    gpd.GeoDataFrame(columns, geometry=geoms, crs=crs).to_file(path, driver="GPKG")
    return path


# ---------------------------------------------------------------------------
# RasterLayer
# ---------------------------------------------------------------------------


class TestRasterLayer:
    def test_grid_properties(self) -> None:
        layer = _layer(1, (0, 0, 8, 4), shape=(2, 4))
        assert layer.width == 4
        assert layer.height == 2
        assert layer.origin == (0, 4)
        assert layer.resolution == (2, 2)
        assert layer.bounds == (0, 0, 8, 4)

    def test_valid_mask_handles_nan_and_nodata(self) -> None:
        layer = _layer(1, (0, 0, 4, 4))
        layer.data[0, 0] = np.nan
        layer.data[0, 1] = -1
        mask = layer.valid_mask()
        assert not mask[0, 0]
        assert not mask[0, 1]
        assert mask.sum() == 14

    def test_roundtrip_through_memfile(self) -> None:
        layer = _layer(3, (0, 0, 4, 4))
        with layer.to_memfile() as memfile, memfile.open() as src:
            back = RasterLayer.from_dataset(src)
        assert np.array_equal(back.data, layer.data)
        assert back.transform == layer.transform
        assert back.nodata == -1

    def test_from_path_missing(self, tmp_path: Path) -> None:
        with pytest.raises(RasterError):
            RasterLayer.from_path(tmp_path / "missing.tif")


# ---------------------------------------------------------------------------
# Raster mosaic
# ---------------------------------------------------------------------------


class TestMosaicRasters:
    def test_first_tile_wins(self) -> None:
        a = _layer(1, (0, 0, 4, 4))
        b = _layer(2, (2, 0, 6, 4))
        a.data[0, 3] = -1  # hole in A inside the overlap

        merged = mosaic_rasters([a, b])

        assert merged.data.shape == (4, 6)
        assert merged.bounds == (0, 0, 6, 4)
        assert merged.data[1, 3] == 1
        assert merged.data[0, 3] == 2
        assert merged.data[0, 5] == 2
        assert merged.data[0, 0] == 1

    def test_order_matters(self) -> None:
        a = _layer(1, (0, 0, 4, 4))
        b = _layer(2, (2, 0, 6, 4))
        assert mosaic_rasters([b, a]).data[1, 3] == 2

    def test_single_tile_passthrough(self) -> None:
        a = _layer(1, (0, 0, 4, 4))
        assert mosaic_rasters([a]) is a

    def test_empty_raises(self) -> None:
        with pytest.raises(EmptyResultError):
            mosaic_rasters([])

    def test_resolution_mismatch_raises(self) -> None:
        a = _layer(1, (0, 0, 4, 4))
        b = _layer(1, (0, 0, 8, 8))
        with pytest.raises(RasterError):
            mosaic_rasters([a, b])

    def test_crs_mismatch_raises(self) -> None:
        a = _layer(1, (0, 0, 4, 4))
        b = RasterLayer(a.data.copy(), a.transform, RioCRS.from_epsg(4326), -1)
        with pytest.raises(RasterError):
            mosaic_rasters([a, b])


class TestClipRaster:
    def test_cells_outside_aoi_are_nodata(self) -> None:
        layer = _layer(5, (0, 0, 10, 10), shape=(10, 10))
        aoi = AreaOfInterest(Polygon([(0, 0), (10, 0), (0, 10)]), CRS.from_epsg(25832))

        clipped = clip_raster(layer, aoi)

        assert clipped.data.shape == (10, 10)
        assert clipped.data[0, 9] == -1
        assert clipped.data[9, 0] == 5
        # boundary cells are kept
        assert clipped.data[0, 0] == 5

    def test_crops_to_envelope(self) -> None:
        layer = _layer(5, (0, 0, 10, 10), shape=(10, 10))
        aoi = AreaOfInterest(box(2, 2, 5, 5), CRS.from_epsg(25832))
        clipped = clip_raster(layer, aoi)
        assert 3 <= clipped.width <= 5
        assert 3 <= clipped.height <= 5
        minx, miny, maxx, maxy = clipped.bounds
        assert minx <= 2 and miny <= 2 and maxx >= 5 and maxy >= 5

    def test_disjoint_aoi_raises(self) -> None:
        layer = _layer(5, (0, 0, 10, 10), shape=(10, 10))
        aoi = AreaOfInterest(box(100, 100, 110, 110), CRS.from_epsg(25832))
        with pytest.raises(EmptyResultError):
            clip_raster(layer, aoi)

    def test_all_nodata_raises(self) -> None:
        layer = _layer(-1, (0, 0, 10, 10), shape=(10, 10))
        aoi = AreaOfInterest(box(2, 2, 5, 5), CRS.from_epsg(25832))
        with pytest.raises(EmptyResultError):
            clip_raster(layer, aoi)


# ---------------------------------------------------------------------------
# Vector tiles
# ---------------------------------------------------------------------------


class TestVectorTiles:
    def test_read_tile(self, tmp_path: Path) -> None:
        path = _write_gpkg(
            tmp_path / "a.gpkg",
            [box(0, 0, 1, 1), box(2, 2, 3, 3)],
            function=["31001_1000", "53001_1800"],
        )
        features = read_vector_tile(path)
        assert len(features) == 2
        assert list(features.attributes["function"]) == ["31001_1000", "53001_1800"]
        assert features.crs.to_epsg() == 25832
        assert features.geometries[0].equals(box(0, 0, 1, 1))

    def test_merge_keeps_order(self, tmp_path: Path) -> None:
        a = _write_gpkg(tmp_path / "a.gpkg", [box(0, 0, 1, 1)], function=["a"])
        b = _write_gpkg(tmp_path / "b.gpkg", [box(5, 5, 6, 6), box(7, 7, 8, 8)], function=["b", "c"])
        merged = load_vector_tiles([a, b])
        assert len(merged) == 3
        assert list(merged.attributes["function"]) == ["a", "b", "c"]
        assert list(merged.attributes.index) == [0, 1, 2]

    def test_merge_crs_mismatch(self) -> None:
        a = RawFeatureSet([Point(0, 0)], pd.DataFrame({"x": [1]}), CRS.from_epsg(25832))
        b = RawFeatureSet([Point(0, 0)], pd.DataFrame({"x": [1]}), CRS.from_epsg(4326))
        with pytest.raises(CRSError):
            merge_feature_sets([a, b])

    def test_merge_empty(self) -> None:
        with pytest.raises(EmptyResultError):
            merge_feature_sets([RawFeatureSet(), RawFeatureSet()])
