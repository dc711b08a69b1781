"""
aoi.py
======
Area of Interest (AOI) loading and reprojection.

The AOI is the processing domain for a whole run.  It is loaded once,
dissolved into a single (Multi)Polygon and never mutated afterwards;
:meth:`AreaOfInterest.to_crs` hands back a new instance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import geopandas as gpd
import shapely
from pyproj import CRS
from shapely.geometry import MultiPolygon, Polygon, box

from shared.python.exceptions import CRSError, ValidationError
from shared.python.validators import Validators

logger = logging.getLogger("palm_prep.aoi")


@dataclass(frozen=True)
class AreaOfInterest:
    """Dissolved AOI polygon with its mandatory CRS."""

    geometry: Polygon | MultiPolygon
    crs: CRS
    label: str = "AOI"

    def __post_init__(self) -> None:
        if self.crs is None:
            raise CRSError(None)
        if self.geometry is None or self.geometry.is_empty:
            raise ValidationError(f"{self.label} geometry is empty.")
        Validators.assert_polygonal([self.geometry.geom_type], self.label)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        return tuple(self.geometry.bounds)  # type: ignore[return-value]

    @property
    def envelope(self) -> Polygon:
        """Axis-aligned bounding rectangle of the AOI."""
        return box(*self.bounds)

    def to_crs(self, crs: object) -> "AreaOfInterest":
        """Return a reprojected copy; ``self`` is left untouched."""
        Validators.assert_crs_valid(crs)
        target = CRS.from_user_input(crs)
        if target == self.crs:
            return self
        series = gpd.GeoSeries([self.geometry], crs=self.crs).to_crs(target)
        return AreaOfInterest(series.iloc[0], target, self.label)


def aoi_from_geodataframe(gdf: gpd.GeoDataFrame, label: str = "AOI") -> AreaOfInterest:
    """Validate and dissolve a GeoDataFrame into an :class:`AreaOfInterest`.

    Raises:
        CRSError: If the frame has no CRS.
        ValidationError: If it is empty or holds non-polygonal geometry.
    """
    if gdf.crs is None:
        raise CRSError(None)
    geoms = gdf.geometry[~(gdf.geometry.isna() | gdf.geometry.is_empty)]
    Validators.assert_polygonal(list(geoms.geom_type), label)

    dissolved = shapely.union_all(list(geoms.values))
    if dissolved.geom_type not in ("Polygon", "MultiPolygon"):
        raise ValidationError(
            f"{label} does not dissolve to a polygon (got {dissolved.geom_type})."
        )
    return AreaOfInterest(dissolved, CRS.from_user_input(gdf.crs), label)


def load_aoi(path: Path) -> AreaOfInterest:
    """Read an AOI from any vector container geopandas can open.

    Args:
        path: GeoPackage, Shapefile, GeoJSON, ... with an embedded CRS.

    Returns:
        The dissolved, validated AOI.

    Raises:
        ValidationError: If the file is missing, unreadable or invalid.
        CRSError: If the file carries no CRS.
    """
    path = Path(path)
    Validators.assert_file_exists(path)
    try:
        gdf = gpd.read_file(path)
    except Exception as exc:
        raise ValidationError(f"Could not read AOI file '{path}': {exc}") from exc

    aoi = aoi_from_geodataframe(gdf, label=path.stem)
    logger.info(
        "Loaded AOI '%s' (%d feature(s), CRS %s, bounds %s)",
        aoi.label,
        len(gdf),
        aoi.crs.to_string(),
        tuple(round(b, 4) for b in aoi.bounds),
    )
    return aoi
