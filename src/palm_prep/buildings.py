"""
PALM Prep — Building Feature Enricher
======================================
Clips normalized building footprints to the exact AOI, assigns dense
sequential IDs and splits bridges from buildings.

Usage::

    from palm_prep.buildings import process_building_vectors

    split = process_building_vectors(normalized, aoi, "EPSG:25832")
    print(len(split.buildings), len(split.bridges))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import geopandas as gpd
import numpy as np
from shapely.geometry import MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry

from palm_prep.aoi import AreaOfInterest
from palm_prep.config import BuildingConfig
from shared.python.exceptions import EmptyResultError
from shared.python.validators import Validators

logger = logging.getLogger("palm_prep.buildings")

ID_COLUMN = "ID"


@dataclass
class BuildingSplit:
    """Clipped features partitioned by function code.

    IDs are assigned before the split, so they are unique across both
    frames.
    """

    buildings: gpd.GeoDataFrame
    bridges: gpd.GeoDataFrame

    def __len__(self) -> int:
        return len(self.buildings) + len(self.bridges)


def polygonal_part(geom: BaseGeometry | None) -> MultiPolygon | None:
    """Return the polygonal content of *geom* as a MultiPolygon.

    Clipping can leave lines or points where a footprint only touched
    the AOI boundary; those are discarded.  ``None`` means nothing
    polygonal is left.
    """
    if geom is None or geom.is_empty:
        return None
    if isinstance(geom, MultiPolygon):
        return geom
    if isinstance(geom, Polygon):
        return MultiPolygon([geom])
    polys: list[Polygon] = []
    for part in getattr(geom, "geoms", []):
        sub = polygonal_part(part)
        if sub is not None:
            polys.extend(sub.geoms)
    return MultiPolygon(polys) if polys else None


def clip_to_aoi(features: gpd.GeoDataFrame, aoi: AreaOfInterest) -> gpd.GeoDataFrame:
    """Intersect every feature with the AOI polygon.

    Features outside the AOI, or with no polygonal remainder, are
    dropped.  The result has a fresh ``0..N-1`` index.
    """
    aoi_native = aoi.to_crs(features.crs)
    clipped = features.geometry.intersection(aoi_native.geometry)
    geoms = [polygonal_part(g) for g in clipped]
    keep = np.array([g is not None for g in geoms], dtype=bool)

    out = features.loc[keep].copy()
    out[out.geometry.name] = gpd.GeoSeries(
        [g for g in geoms if g is not None], index=out.index, crs=features.crs
    )
    return out.reset_index(drop=True)


def assign_ids(features: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Add a dense ``ID`` column ``1..N`` in iteration order."""
    out = features.drop(columns=[ID_COLUMN], errors="ignore").copy()
    out.insert(0, ID_COLUMN, np.arange(1, len(out) + 1, dtype=np.int64))
    return out


def process_building_vectors(
    features: gpd.GeoDataFrame,
    aoi: AreaOfInterest,
    target_crs: object,
    config: BuildingConfig | None = None,
) -> BuildingSplit:
    """Reproject, clip, number and split building features.

    Args:
        features: Normalized (MultiPolygon) building features.
        aoi: Processing domain.
        target_crs: Working CRS of the run.
        config: Attribute conventions; defaults to :class:`BuildingConfig`.

    Returns:
        A :class:`BuildingSplit`.  Rows whose function code equals the
        bridge code go to ``bridges``; everything else, including a
        missing code, goes to ``buildings``.

    Raises:
        ColumnNotFoundError: If the function column is absent.
        CRSError: If *target_crs* is invalid.
        EmptyResultError: If no feature survives clipping.
    """
    config = config or BuildingConfig()
    Validators.assert_columns_exist(features, [config.function_column])
    Validators.assert_crs_valid(target_crs)

    projected = features.to_crs(target_crs)
    clipped = clip_to_aoi(projected, aoi)
    if clipped.empty:
        raise EmptyResultError("No building features remain after clipping to the AOI.")

    numbered = assign_ids(clipped)
    is_bridge = (numbered[config.function_column] == config.bridge_code).fillna(False).astype(bool)

    split = BuildingSplit(
        buildings=numbered.loc[~is_bridge].copy(),
        bridges=numbered.loc[is_bridge].copy(),
    )
    logger.info(
        "Clipped %d of %d feature(s) to the AOI: %d building(s), %d bridge(s)",
        len(numbered),
        len(features),
        len(split.buildings),
        len(split.bridges),
    )
    return split
