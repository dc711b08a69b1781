"""
PALM Prep — Building Rasterization
===================================
Burns classified building and bridge attributes onto the reference
grid.

Cells covered by several features keep the maximum value.  Cells are
burned whenever a footprint touches them, so neighbouring buildings
can compete for a shared edge cell; the higher ID / height wins there.
"""

from __future__ import annotations

import logging

import geopandas as gpd
import numpy as np
import pandas as pd
from rasterio.features import rasterize

from palm_prep.classify import TYPE_COLUMN
from palm_prep.buildings import ID_COLUMN
from palm_prep.config import BuildingConfig
from palm_prep.raster import GridSpec, RasterLayer
from shared.python.validators import Validators

logger = logging.getLogger("palm_prep.rasterize")

DEFAULT_NODATA = -9999.0


def rasterize_buildings(
    features: gpd.GeoDataFrame,
    grid: GridSpec,
    column: str,
    nodata: float = DEFAULT_NODATA,
) -> RasterLayer:
    """Rasterize *column* of *features* with max aggregation.

    Features are burned in ascending value order so that the largest
    value ends up in every contested cell.  Rows with a null value are
    skipped.

    Raises:
        ColumnNotFoundError: If *column* is absent.
    """
    Validators.assert_columns_exist(features, [column])
    if features.crs is not None and features.crs != grid.crs:
        features = features.to_crs(grid.crs.to_wkt())

    values = pd.to_numeric(features[column], errors="coerce")
    keep = values.notna() & features.geometry.notna() & ~features.geometry.is_empty
    ordered = pd.DataFrame({"geometry": features.geometry[keep], "value": values[keep]})
    ordered = ordered.sort_values("value", kind="stable")

    out = np.full(grid.shape, nodata, dtype=np.float32)
    if not ordered.empty:
        rasterize(
            zip(ordered["geometry"], ordered["value"].astype(float)),
            out_shape=grid.shape,
            transform=grid.transform,
            out=out,
            all_touched=True,
        )
    logger.debug("Rasterized '%s' from %d feature(s)", column, len(ordered))
    return RasterLayer(out, grid.transform, grid.crs, nodata)


def rasterize_building_layers(
    buildings: gpd.GeoDataFrame,
    grid: GridSpec,
    config: BuildingConfig | None = None,
    nodata: float = DEFAULT_NODATA,
) -> dict[str, RasterLayer]:
    """Type, ID and height rasters for buildings.

    Raises:
        ColumnNotFoundError: If ``palm_type``, ``ID`` or the height
            column is missing.
    """
    config = config or BuildingConfig()
    Validators.assert_columns_exist(buildings, [TYPE_COLUMN, ID_COLUMN, config.height_column])
    layers = {
        "building_type": rasterize_buildings(buildings, grid, TYPE_COLUMN, nodata),
        "building_id": rasterize_buildings(buildings, grid, ID_COLUMN, nodata),
        "building_height": rasterize_buildings(buildings, grid, config.height_column, nodata),
    }
    logger.info("Rasterized %d building(s)", len(buildings))
    return layers


def rasterize_bridge_layers(
    bridges: gpd.GeoDataFrame,
    grid: GridSpec,
    config: BuildingConfig | None = None,
    nodata: float = DEFAULT_NODATA,
) -> dict[str, RasterLayer]:
    """ID and height rasters for bridges."""
    config = config or BuildingConfig()
    Validators.assert_columns_exist(bridges, [ID_COLUMN, config.height_column])
    layers = {
        "bridges_id": rasterize_buildings(bridges, grid, ID_COLUMN, nodata),
        "bridges_height": rasterize_buildings(bridges, grid, config.height_column, nodata),
    }
    logger.info("Rasterized %d bridge(s)", len(bridges))
    return layers
