"""
PALM Prep — GeoTIFF Export
===========================
Writes named raster layers as ``{prefix}_{name}_{resolution}.tif``.

Usage::

    from palm_prep.export import export_rasters

    records = export_rasters({"DEM": dem, "LC": lc}, Path("output"), "munich")
    print(records[["objectname", "filename"]])
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping

import pandas as pd
import rasterio

from palm_prep.raster import RasterLayer
from shared.python.exceptions import OutputWriteError, ValidationError
from shared.python.validators import Validators

logger = logging.getLogger("palm_prep.export")

GTIFF_OPTIONS = {"compress": "deflate", "tiled": True, "blockxsize": 256, "blockysize": 256}


def output_filename(prefix: str, name: str, resolution: int) -> str:
    return f"{prefix}_{name}_{resolution}.tif"


def write_geotiff(layer: RasterLayer, path: Path) -> Path:
    """Write one layer as a DEFLATE-compressed, tiled GeoTIFF.

    Raises:
        OutputWriteError: If rasterio cannot write the file.
    """
    profile = layer.profile(**GTIFF_OPTIONS)
    # blocks may not exceed the raster size
    if layer.width < 256 or layer.height < 256:
        profile.update(tiled=False)
        profile.pop("blockxsize")
        profile.pop("blockysize")
    try:
        with rasterio.open(path, "w", **profile) as dst:
            dst.write(layer.data, 1)
    except (rasterio.errors.RasterioError, OSError) as exc:
        raise OutputWriteError(str(path), str(exc)) from exc
    return path


def export_rasters(
    layers: Mapping[str, RasterLayer],
    output_dir: Path,
    prefix: str,
    resolution: int | None = None,
) -> pd.DataFrame:
    """Write every layer to *output_dir*.

    Args:
        layers: Layer name → raster.
        output_dir: Created if missing.
        prefix: Leading part of every filename.
        resolution: Integer used in filenames; defaults to the rounded
                    x resolution of the first layer.

    Returns:
        One row per file with columns ``objectname``, ``filename`` and
        ``filepath``.

    Raises:
        ValidationError: If *layers* is empty.
        OutputWriteError: If a file cannot be written.
    """
    if not layers:
        raise ValidationError("No rasters given to export.")
    output_dir = Path(output_dir)
    Validators.assert_output_dir_writable(output_dir)

    if resolution is None:
        resolution = int(round(next(iter(layers.values())).resolution[0]))

    records: list[dict[str, str]] = []
    for name, layer in layers.items():
        filename = output_filename(prefix, name, resolution)
        path = write_geotiff(layer, output_dir / filename)
        records.append({"objectname": name, "filename": filename, "filepath": str(path)})
        logger.info("Exported %s", filename)

    return pd.DataFrame(records, columns=["objectname", "filename", "filepath"])
