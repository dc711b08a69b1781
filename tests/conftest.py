"""
Shared fixtures for the PALM Prep test suite.

Everything is synthetic: AOIs are built with shapely, rasters are
written with rasterio into ``tmp_path``, and no test touches the
network.
"""

from __future__ import annotations

from pathlib import Path

import geopandas as gpd
import numpy as np
import pytest
import rasterio
from pyproj import CRS
from rasterio.transform import from_bounds
from shapely.geometry import Polygon, box

from palm_prep.aoi import AreaOfInterest


@pytest.fixture()
def utm_crs() -> CRS:
    return CRS.from_epsg(25832)


@pytest.fixture()
def square_aoi(utm_crs: CRS) -> AreaOfInterest:
    """An AOI whose edges are deliberately off the 10 m grid."""
    return AreaOfInterest(box(1000, 2000, 1095, 2087), utm_crs, "square")


@pytest.fixture()
def triangle_aoi(utm_crs: CRS) -> AreaOfInterest:
    return AreaOfInterest(Polygon([(1000, 2000), (1100, 2000), (1000, 2090)]), utm_crs, "triangle")


@pytest.fixture()
def aoi_gpkg(tmp_path: Path) -> Path:
    """A GeoPackage holding the square AOI."""
    path = tmp_path / "aoi.gpkg"
    gpd.GeoDataFrame(
        {"name": ["aoi"]}, geometry=[box(1000, 2000, 1095, 2087)], crs="EPSG:25832"
    ).to_file(path, driver="GPKG")
    return path


@pytest.fixture()
def dem_tif(tmp_path: Path) -> Path:
    """5 m elevation gradient around the square AOI."""
    path = tmp_path / "dem.tif"
    data = np.tile(np.arange(60, dtype=np.float32), (60, 1))
    with rasterio.open(
        path, "w",
        driver="GTiff",
        height=60,
        width=60,
        count=1,
        dtype="float32",
        crs="EPSG:25832",
        transform=from_bounds(900, 1900, 1200, 2200, 60, 60),
        nodata=-9999.0,
    ) as dst:
        dst.write(data, 1)
    return path


@pytest.fixture()
def lc_tif(tmp_path: Path) -> Path:
    """20 m land-cover classes 1..3 around the square AOI."""
    path = tmp_path / "lc.tif"
    rows, cols = np.indices((15, 15))
    data = ((rows + cols) % 3 + 1).astype(np.uint8)
    with rasterio.open(
        path, "w",
        driver="GTiff",
        height=15,
        width=15,
        count=1,
        dtype="uint8",
        crs="EPSG:25832",
        transform=from_bounds(900, 1900, 1200, 2200, 15, 15),
        nodata=0,
    ) as dst:
        dst.write(data, 1)
    return path
