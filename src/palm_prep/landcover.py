"""
PALM Prep — Land-Cover Reclassification
========================================
Splits an aligned land-cover raster into the PALM vegetation, water and
pavement type layers.

Source classes not listed for a layer become that layer's nodata value.
"""

from __future__ import annotations

import logging

import numpy as np

from palm_prep.raster import RasterLayer

logger = logging.getLogger("palm_prep.landcover")

VEGETATION_MAP: dict[int, int] = {4: 3, 5: 1, 8: 1, 9: 16, 10: 17, 11: 7}
WATER_MAP: dict[int, int] = {2: 1}
PAVEMENT_MAP: dict[int, int] = {12: 1, 6: 13}

LAYER_MAPS: dict[str, dict[int, int]] = {
    "vegetation_type": VEGETATION_MAP,
    "water_type": WATER_MAP,
    "pavement_type": PAVEMENT_MAP,
}


def reclassify(layer: RasterLayer, mapping: dict[int, int], nodata_out: int = 255) -> RasterLayer:
    """Map source classes through *mapping*; everything else → *nodata_out*."""
    src = layer.data
    valid = layer.valid_mask()
    out = np.full(src.shape, nodata_out, dtype=np.uint8)
    for source_class, target_class in mapping.items():
        out[valid & (src == source_class)] = target_class
    return RasterLayer(out, layer.transform, layer.crs, nodata_out)


def reclassify_land_cover(lc: RasterLayer, nodata_out: int = 255) -> dict[str, RasterLayer]:
    """Derive ``vegetation_type``, ``water_type`` and ``pavement_type``.

    Args:
        lc: Land-cover raster, usually already aligned.
        nodata_out: Value for cells without a target class.

    Returns:
        Layer name → reclassified uint8 layer on the same grid as *lc*.
    """
    layers = {name: reclassify(lc, mapping, nodata_out) for name, mapping in LAYER_MAPS.items()}
    for name, layer in layers.items():
        logger.debug("%s: %d classified cell(s)", name, int((layer.data != nodata_out).sum()))
    return layers
