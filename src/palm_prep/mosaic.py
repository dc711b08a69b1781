"""
PALM Prep — Mosaic & Clip
==========================
Merges per-tile payloads into one dataset and clips it to the AOI.

Rasters:
    :func:`mosaic_rasters` merges same-CRS, same-resolution tiles with a
    "first non-nodata wins" rule in enumeration order;
    :func:`clip_raster` crops to the AOI envelope and masks every cell
    outside the AOI polygon.

Vectors:
    :func:`read_vector_tile` reads every layer of a cached tile into a
    :class:`RawFeatureSet`; :func:`merge_feature_sets` concatenates the
    per-tile sets once.  Exact clipping of vectors happens later, after
    geometry repair (see :mod:`palm_prep.buildings`).
"""

from __future__ import annotations

import logging
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

import fiona
import geopandas as gpd
import numpy as np
import pandas as pd
import rasterio
from pyproj import CRS
from rasterio.mask import mask as rio_mask
from rasterio.merge import merge as rio_merge
from shapely.errors import GeometryTypeError
from shapely.geometry import mapping, shape

from palm_prep.aoi import AreaOfInterest
from palm_prep.raster import RasterLayer
from shared.python.exceptions import CRSError, EmptyResultError, RasterError

logger = logging.getLogger("palm_prep.mosaic")


# ---------------------------------------------------------------------------
# Raster mosaic / clip
# ---------------------------------------------------------------------------


def mosaic_rasters(layers: Sequence[RasterLayer]) -> RasterLayer:
    """Merge tiles into one raster covering their union footprint.

    Each output cell takes the value of the first tile, in the given
    order, that holds data there.  Later tiles never overwrite it.

    Raises:
        EmptyResultError: If *layers* is empty.
        RasterError: If the tiles disagree on CRS or resolution.
    """
    if not layers:
        raise EmptyResultError("No raster tiles to mosaic.")
    first = layers[0]
    for i, layer in enumerate(layers[1:], start=1):
        if layer.crs != first.crs:
            raise RasterError(f"Tile {i} CRS {layer.crs} differs from {first.crs}.")
        if not np.allclose(layer.resolution, first.resolution):
            raise RasterError(
                f"Tile {i} resolution {layer.resolution} differs from {first.resolution}."
            )
    if len(layers) == 1:
        return first

    nodata = first.nodata if first.nodata is not None else 0
    with ExitStack() as stack:
        datasets = []
        for layer in layers:
            memfile = stack.enter_context(layer.to_memfile())
            datasets.append(stack.enter_context(memfile.open()))
        try:
            merged, transform = rio_merge(datasets, method="first", nodata=nodata)
        except (ValueError, rasterio.errors.RasterioError) as exc:
            raise RasterError(f"Failed to mosaic {len(layers)} tile(s): {exc}") from exc

    result = RasterLayer(merged[0], transform, first.crs, nodata)
    logger.info("Mosaicked %d tile(s) → %dx%d", len(layers), result.width, result.height)
    return result


def clip_raster(layer: RasterLayer, aoi: AreaOfInterest) -> RasterLayer:
    """Crop *layer* to the AOI envelope and mask cells outside the AOI.

    Cells touched by the AOI boundary are kept.

    Raises:
        EmptyResultError: If nothing but nodata remains.
    """
    aoi_native = aoi.to_crs(layer.crs.to_wkt())
    nodata = layer.nodata if layer.nodata is not None else 0

    with layer.to_memfile() as memfile, memfile.open() as src:
        try:
            clipped, transform = rio_mask(
                src,
                [mapping(aoi_native.geometry)],
                crop=True,
                all_touched=True,
                nodata=nodata,
                filled=True,
            )
        except ValueError as exc:
            # rasterio raises ValueError when the shapes miss the raster
            raise EmptyResultError(f"AOI does not overlap the raster: {exc}") from exc

    result = RasterLayer(clipped[0], transform, layer.crs, nodata)
    if result.is_empty():
        raise EmptyResultError("Clipped raster contains only nodata.")
    logger.debug("Clipped raster to %dx%d", result.width, result.height)
    return result


# ---------------------------------------------------------------------------
# Vector tiles
# ---------------------------------------------------------------------------


@dataclass
class RawFeatureSet:
    """Features read from vector tiles, before geometry repair.

    Attributes:
        geometries: Shapely geometries, or GeoJSON-like mappings for
                    types shapely cannot build (``PolyhedralSurface``,
                    ``TIN``, ...).
        attributes: One attribute row per geometry.
        crs: Shared CRS of all geometries.
    """

    geometries: list[Any] = field(default_factory=list)
    attributes: pd.DataFrame = field(default_factory=pd.DataFrame)
    crs: CRS | None = None

    def __len__(self) -> int:
        return len(self.geometries)

    @classmethod
    def from_geodataframe(cls, gdf: gpd.GeoDataFrame) -> "RawFeatureSet":
        """Wrap an existing GeoDataFrame, dropping null geometries."""
        keep = gdf[gdf.geometry.notna()]
        attributes = pd.DataFrame(keep.drop(columns=keep.geometry.name)).reset_index(drop=True)
        crs = CRS.from_user_input(gdf.crs) if gdf.crs is not None else None
        return cls(list(keep.geometry.values), attributes, crs)


def _as_geometry(raw: Any) -> Any:
    """Build a shapely geometry, or keep a plain mapping when unsupported."""
    geo = dict(getattr(raw, "__geo_interface__", raw))
    try:
        return shape(geo)
    except (GeometryTypeError, ValueError, AttributeError, TypeError):
        return geo


def read_vector_tile(path: Path) -> RawFeatureSet:
    """Read every layer of a vector tile into a :class:`RawFeatureSet`.

    Features with a null geometry are dropped.

    Raises:
        CRSError: If a layer carries no CRS.
    """
    path = Path(path)
    geometries: list[Any] = []
    rows: list[dict[str, Any]] = []
    crs: CRS | None = None

    for layer_name in fiona.listlayers(path):
        with fiona.open(path, layer=layer_name) as src:
            if not src.crs_wkt:
                raise CRSError(None)
            layer_crs = CRS.from_wkt(src.crs_wkt)
            if crs is None:
                crs = layer_crs
            elif layer_crs != crs:
                raise CRSError(layer_crs.to_string())

            dropped = 0
            for feature in src:
                if feature.geometry is None:
                    dropped += 1
                    continue
                geometries.append(_as_geometry(feature.geometry))
                rows.append(dict(feature.properties))
            if dropped:
                logger.debug("%s/%s: dropped %d null geometries", path.name, layer_name, dropped)

    logger.debug("Read %d feature(s) from %s", len(geometries), path.name)
    return RawFeatureSet(geometries, pd.DataFrame(rows), crs)


def merge_feature_sets(sets: Sequence[RawFeatureSet]) -> RawFeatureSet:
    """Concatenate per-tile sets into one, in order.

    Raises:
        EmptyResultError: If the merged set holds no feature.
        CRSError: If the sets disagree on CRS.
    """
    non_empty = [s for s in sets if len(s)]
    if not non_empty:
        raise EmptyResultError("No features found in any vector tile.")

    crs = non_empty[0].crs
    geometries: list[Any] = []
    frames: list[pd.DataFrame] = []
    for fs in non_empty:
        if fs.crs != crs:
            raise CRSError(fs.crs.to_string() if fs.crs is not None else None)
        geometries.extend(fs.geometries)
        frames.append(fs.attributes)

    attributes = pd.concat(frames, ignore_index=True, sort=False)
    logger.info("Merged %d tile(s) into %d feature(s)", len(non_empty), len(geometries))
    return RawFeatureSet(geometries, attributes, crs)


def load_vector_tiles(paths: Sequence[Path]) -> RawFeatureSet:
    """Read and merge several cached vector tiles."""
    return merge_feature_sets([read_vector_tile(p) for p in paths])
