"""
PALM Prep — Grid Aligner
=========================
Resamples heterogeneous rasters onto one target-aligned pixel grid.

The reference grid is the AOI bounding rectangle in the target CRS with
every edge snapped outward to a multiple of the resolution, so
independently produced layers always share cell edges.  Each layer is
reprojected straight onto that grid and masked outside the AOI polygon.

Layers whose name matches the categorical pattern (default ``LC|WSF``)
use nearest-neighbour resampling; all others use bilinear.

Usage::

    from palm_prep.align import align_rasters

    aligned = align_rasters(aoi, "EPSG:25832", 10.0, {"DEM": dem, "LC": lc})
    aligned["DEM"].origin == aligned["LC"].origin   # always True
"""

from __future__ import annotations

import logging
import math
import re
from pathlib import Path
from typing import Mapping, Union

import numpy as np
from rasterio.crs import CRS
from rasterio.errors import RasterioError
from rasterio.features import geometry_mask
from rasterio.transform import from_origin
from rasterio.warp import Resampling, reproject
from shapely.geometry import mapping

from palm_prep.aoi import AreaOfInterest
from palm_prep.raster import AlignedRasterSet, GridSpec, RasterLayer
from shared.python.exceptions import CRSError, RasterError, ValidationError
from shared.python.validators import Validators

logger = logging.getLogger("palm_prep.align")

DEFAULT_CATEGORICAL_PATTERN = "LC|WSF"
DEFAULT_NODATA = -9999.0

RasterSource = Union[RasterLayer, Path, str]


# ---------------------------------------------------------------------------
# Reference grid
# ---------------------------------------------------------------------------


def _snap(value: float, resolution: float, op) -> float:
    # rounding first keeps already-snapped edges from drifting by one cell
    return op(round(value / resolution, 9)) * resolution


def snap_bounds(
    bounds: tuple[float, float, float, float], resolution: float
) -> tuple[float, float, float, float]:
    """Snap ``(minx, miny, maxx, maxy)`` outward to multiples of *resolution*.

    Snapping an already snapped extent returns it unchanged.
    """
    if resolution <= 0:
        raise ValidationError(f"Resolution must be positive, got {resolution}.")
    minx, miny, maxx, maxy = bounds
    return (
        _snap(minx, resolution, math.floor),
        _snap(miny, resolution, math.floor),
        _snap(maxx, resolution, math.ceil),
        _snap(maxy, resolution, math.ceil),
    )


def build_reference_grid(aoi: AreaOfInterest, crs: object, resolution: float) -> GridSpec:
    """Build the target-aligned grid covering *aoi* in *crs*."""
    Validators.assert_crs_valid(crs)
    aoi_t = aoi.to_crs(crs)
    minx, miny, maxx, maxy = snap_bounds(aoi_t.bounds, resolution)
    width = max(int(round((maxx - minx) / resolution)), 1)
    height = max(int(round((maxy - miny) / resolution)), 1)

    grid = GridSpec(
        transform=from_origin(minx, maxy, resolution, resolution),
        width=width,
        height=height,
        crs=CRS.from_user_input(aoi_t.crs.to_wkt()),
    )
    logger.info(
        "Reference grid: %dx%d cells at %g, origin (%g, %g)",
        width, height, resolution, minx, maxy,
    )
    return grid


# ---------------------------------------------------------------------------
# Resampling
# ---------------------------------------------------------------------------


def is_categorical(name: str, pattern: str = DEFAULT_CATEGORICAL_PATTERN) -> bool:
    return re.search(pattern, name, flags=re.IGNORECASE) is not None


def resampling_for(name: str, pattern: str = DEFAULT_CATEGORICAL_PATTERN) -> Resampling:
    """Nearest neighbour for categorical layers, bilinear otherwise."""
    return Resampling.nearest if is_categorical(name, pattern) else Resampling.bilinear


def align_layer(
    layer: RasterLayer,
    grid: GridSpec,
    aoi: AreaOfInterest,
    resampling: Resampling,
    nodata: float = DEFAULT_NODATA,
) -> RasterLayer:
    """Reproject *layer* onto *grid* and mask cells outside *aoi*.

    Raises:
        CRSError: If the layer has no CRS.
        RasterError: If reprojection fails.
    """
    if layer.crs is None:
        raise CRSError(None)

    dst = np.full(grid.shape, nodata, dtype=np.float32)
    try:
        reproject(
            source=layer.data,
            destination=dst,
            src_transform=layer.transform,
            src_crs=layer.crs,
            src_nodata=layer.nodata,
            dst_transform=grid.transform,
            dst_crs=grid.crs,
            dst_nodata=nodata,
            resampling=resampling,
        )
    except (RasterioError, ValueError) as exc:
        raise RasterError(f"Reprojection onto the reference grid failed: {exc}") from exc

    aoi_grid = aoi.to_crs(grid.crs.to_wkt())
    outside = geometry_mask(
        [mapping(aoi_grid.geometry)],
        out_shape=grid.shape,
        transform=grid.transform,
        all_touched=True,
    )
    dst[outside] = nodata
    return RasterLayer(dst, grid.transform, grid.crs, nodata)


def align_rasters(
    aoi: AreaOfInterest,
    target_crs: object,
    resolution: float,
    rasters: Mapping[str, RasterSource],
    categorical_pattern: str = DEFAULT_CATEGORICAL_PATTERN,
    nodata: float = DEFAULT_NODATA,
) -> AlignedRasterSet:
    """Align every named raster onto one reference grid.

    Args:
        aoi: Processing domain.
        target_crs: Output CRS.
        resolution: Output cell size in target CRS units.
        rasters: Layer name → :class:`RasterLayer` or raster path.
        categorical_pattern: Regex (case-insensitive) selecting
                             nearest-neighbour layers.
        nodata: Nodata marker of the aligned float32 layers.

    Returns:
        An :class:`AlignedRasterSet` whose layers share origin,
        resolution, CRS and dimensions.

    Raises:
        ValidationError: If *rasters* is empty.
        RasterError: If a layer cannot be aligned or the grids diverge.
    """
    if not rasters:
        raise ValidationError("No rasters given to align.")

    grid = build_reference_grid(aoi, target_crs, resolution)
    aligned = AlignedRasterSet(grid=grid)

    for name, source in rasters.items():
        layer = source if isinstance(source, RasterLayer) else RasterLayer.from_path(Path(source))
        kernel = resampling_for(name, categorical_pattern)
        logger.info("Aligning %s (%s resampling)", name, kernel.name)
        aligned.layers[name] = align_layer(layer, grid, aoi, kernel, nodata)
        aligned.resampling[name] = kernel.name

    Validators.assert_same_grid(aligned.layers)
    return aligned
