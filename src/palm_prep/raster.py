"""
PALM Prep — Raster Data Model
==============================
In-memory raster containers shared by the mosaic, alignment,
rasterization and export stages.

Classes:
    RasterLayer       One 2-D band with georeferencing and nodata.
    GridSpec          A reference pixel grid (transform + size + CRS).
    AlignedRasterSet  Layers that all share one GridSpec.

Usage::

    from palm_prep.raster import RasterLayer

    layer = RasterLayer.from_path(Path("dem.tif"))
    print(layer.origin, layer.resolution, layer.width, layer.height)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
import numpy.typing as npt
import rasterio
from affine import Affine
from rasterio.crs import CRS
from rasterio.io import MemoryFile

from shared.python.exceptions import RasterError

logger = logging.getLogger("palm_prep.raster")


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class RasterLayer:
    """A single-band raster held in memory.

    Attributes:
        data: 2-D array of cell values, row 0 at the top.
        transform: Affine geotransform mapping (col, row) → (x, y).
        crs: Coordinate reference system of the grid.
        nodata: Marker for missing cells, or ``None``.
    """

    data: npt.NDArray
    transform: Affine
    crs: CRS
    nodata: float | None = None

    # ------------------------------------------------------------------
    # Derived grid properties
    # ------------------------------------------------------------------

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    @property
    def origin(self) -> tuple[float, float]:
        """Upper-left corner ``(x, y)``."""
        return (self.transform.c, self.transform.f)

    @property
    def resolution(self) -> tuple[float, float]:
        """Cell size ``(x_res, y_res)``, both positive."""
        return (abs(self.transform.a), abs(self.transform.e))

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """``(minx, miny, maxx, maxy)`` of the full grid."""
        x0, y0 = self.origin
        x_res, y_res = self.resolution
        return (x0, y0 - self.height * y_res, x0 + self.width * x_res, y0)

    def valid_mask(self) -> npt.NDArray[np.bool_]:
        """Boolean array, ``True`` where the cell holds data."""
        valid = np.ones(self.data.shape, dtype=bool)
        if np.issubdtype(self.data.dtype, np.floating):
            valid &= np.isfinite(self.data)
        if self.nodata is not None:
            if np.isnan(self.nodata):
                valid &= ~np.isnan(self.data)
            else:
                valid &= self.data != self.nodata
        return valid

    def is_empty(self) -> bool:
        """Return ``True`` when no cell holds data."""
        return not bool(self.valid_mask().any())

    def profile(self, **overrides: object) -> dict:
        """Build a rasterio GeoTIFF profile describing this layer."""
        prof: dict = {
            "driver": "GTiff",
            "height": self.height,
            "width": self.width,
            "count": 1,
            "dtype": str(self.data.dtype),
            "crs": self.crs,
            "transform": self.transform,
            "nodata": self.nodata,
        }
        prof.update(overrides)
        return prof

    # ------------------------------------------------------------------
    # Constructors / converters
    # ------------------------------------------------------------------

    @classmethod
    def from_dataset(cls, src: rasterio.io.DatasetReader, band: int = 1) -> "RasterLayer":
        """Read *band* of an open rasterio dataset."""
        return cls(
            data=src.read(band),
            transform=src.transform,
            crs=src.crs,
            nodata=src.nodata,
        )

    @classmethod
    def from_path(cls, path: Path, band: int = 1) -> "RasterLayer":
        """Load a raster band from disk.

        Raises:
            RasterError: If rasterio cannot open the file.
        """
        try:
            with rasterio.open(path) as src:
                layer = cls.from_dataset(src, band)
        except rasterio.errors.RasterioIOError as exc:
            raise RasterError(f"Could not open raster '{path}': {exc}") from exc
        logger.debug("Loaded %s (%dx%d, %s)", Path(path).name, layer.width, layer.height, layer.crs)
        return layer

    def to_memfile(self) -> MemoryFile:
        """Write the layer into a new :class:`rasterio.io.MemoryFile`.

        The caller is responsible for closing the returned object.
        """
        memfile = MemoryFile()
        with memfile.open(**self.profile()) as dst:
            dst.write(self.data, 1)
        return memfile


@dataclass(frozen=True)
class GridSpec:
    """A reference pixel grid all aligned layers are resampled onto."""

    transform: Affine
    width: int
    height: int
    crs: CRS

    @property
    def origin(self) -> tuple[float, float]:
        return (self.transform.c, self.transform.f)

    @property
    def resolution(self) -> tuple[float, float]:
        return (abs(self.transform.a), abs(self.transform.e))

    @property
    def shape(self) -> tuple[int, int]:
        return (self.height, self.width)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        x0, y0 = self.origin
        x_res, y_res = self.resolution
        return (x0, y0 - self.height * y_res, x0 + self.width * x_res, y0)


@dataclass
class AlignedRasterSet:
    """Named layers sharing one reference grid.

    ``resampling`` records the kernel name used for each layer.
    """

    grid: GridSpec
    layers: dict[str, RasterLayer] = field(default_factory=dict)
    resampling: dict[str, str] = field(default_factory=dict)

    def __getitem__(self, name: str) -> RasterLayer:
        return self.layers[name]

    def __contains__(self, name: object) -> bool:
        return name in self.layers

    def names(self) -> list[str]:
        return list(self.layers)
