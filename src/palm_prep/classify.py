"""
PALM Prep — Building Classification
====================================
Derives a construction-year proxy per building from the WSF Evolution
raster and maps (function code, year) onto the seven PALM building
types.

PALM building types::

    1  residential, before 1986      4  other, before 1986
    2  residential, 1986-2000        5  other, 1986-2000
    3  residential, after 2000       6  other, after 2000
    7  bridge

Usage::

    from palm_prep.classify import assign_building_types

    typed = assign_building_types(split.buildings, wsf_layer)
"""

from __future__ import annotations

import logging
import math
from typing import Callable

import geopandas as gpd
import numpy as np
import pandas as pd
from rasterstats import zonal_stats

from palm_prep.config import BuildingConfig
from palm_prep.raster import RasterLayer

logger = logging.getLogger("palm_prep.classify")

YEAR_COLUMN = "year_max"
TYPE_COLUMN = "palm_type"

BRIDGE_TYPE = 7

# WSF Evolution encodes "built up in the first observation" as 1985;
# -1 marks the same pre-1986 cohort when the year is unset.
PRE_1986 = "pre_1986"
YEAR_BANDS: tuple[tuple[str, Callable[[int], bool]], ...] = (
    (PRE_1986, lambda y: y in (-1, 1985)),
    ("1986_2000", lambda y: 1986 <= y <= 2000),
    ("post_2000", lambda y: y > 2000),
)

TYPE_TABLE: dict[str, dict[str, int]] = {
    "residential": {PRE_1986: 1, "1986_2000": 2, "post_2000": 3},
    "other": {PRE_1986: 4, "1986_2000": 5, "post_2000": 6},
}


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


def _as_year(year: object) -> int:
    if year is None:
        return 0
    try:
        value = float(year)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0
    return 0 if math.isnan(value) else int(value)


def year_band(year: int) -> str:
    """Name of the first band matching *year*; unmatched years fall
    back to the pre-1986 band."""
    for name, test in YEAR_BANDS:
        if test(year):
            return name
    return PRE_1986


def classify_building(
    function_code: object,
    year: object,
    config: BuildingConfig | None = None,
) -> int:
    """Return the PALM building type for one feature.

    Precedence: the bridge code wins regardless of year; then the
    residential/other category is looked up with the year band.

    Args:
        function_code: ALKIS function code, may be ``None``.
        year: Maximum WSF year; ``None``/NaN count as 0.
        config: Code conventions; defaults to :class:`BuildingConfig`.

    Example::

        >>> classify_building("31001_1000", 1990)
        2
    """
    config = config or BuildingConfig()
    if function_code == config.bridge_code:
        return BRIDGE_TYPE
    category = "residential" if function_code == config.residential_code else "other"
    return TYPE_TABLE[category][year_band(_as_year(year))]


# ---------------------------------------------------------------------------
# Zonal maximum
# ---------------------------------------------------------------------------


def extract_zonal_max(features: gpd.GeoDataFrame, layer: RasterLayer) -> pd.Series:
    """Maximum valid cell value under each feature.

    A cell counts when the footprint touches it at all, not only when
    its centre falls inside.  Features are reprojected to the raster
    CRS first; features without any valid cell get 0.

    Returns:
        Series aligned with ``features.index``.
    """
    if features.crs is not None and features.crs != layer.crs:
        features = features.to_crs(layer.crs.to_wkt())

    values: list[float] = [0] * len(features)
    present = [i for i, g in enumerate(features.geometry) if g is not None and not g.is_empty]
    if not present:
        return pd.Series(values, index=features.index, name=YEAR_COLUMN)

    stats = zonal_stats(
        [features.geometry.iloc[i] for i in present],
        layer.data,
        affine=layer.transform,
        nodata=layer.nodata,
        stats=["max"],
        all_touched=True,
    )
    for i, result in zip(present, stats):
        peak = result.get("max")
        if peak is not None:
            values[i] = peak.item() if hasattr(peak, "item") else peak

    return pd.Series(values, index=features.index, name=YEAR_COLUMN)


def assign_building_types(
    buildings: gpd.GeoDataFrame,
    wsf: RasterLayer | None,
    config: BuildingConfig | None = None,
) -> gpd.GeoDataFrame:
    """Add ``year_max`` and ``palm_type`` columns.

    Args:
        buildings: Clipped features with a function column.
        wsf: Settlement-year raster; ``None`` treats every year as 0.
        config: Code conventions; defaults to :class:`BuildingConfig`.

    Returns:
        A new GeoDataFrame; the input is not modified.
    """
    config = config or BuildingConfig()
    out = buildings.copy()
    if wsf is None:
        out[YEAR_COLUMN] = 0
    else:
        out[YEAR_COLUMN] = extract_zonal_max(out, wsf).fillna(0).astype(np.int64)

    codes = out[config.function_column] if config.function_column in out.columns else [None] * len(out)
    out[TYPE_COLUMN] = [
        classify_building(code, year, config) for code, year in zip(codes, out[YEAR_COLUMN])
    ]
    out[TYPE_COLUMN] = out[TYPE_COLUMN].astype(np.int64)

    counts = out[TYPE_COLUMN].value_counts().sort_index()
    logger.info(
        "Assigned PALM types to %d feature(s): %s",
        len(out),
        ", ".join(f"{t}={n}" for t, n in counts.items()),
    )
    return out
