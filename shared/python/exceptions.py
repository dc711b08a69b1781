"""
PALM Prep — Custom Exception Hierarchy
=======================================
Every stage of the static-driver preparation pipeline raises exceptions
from this module so callers can catch them at the right level of
granularity.

Hierarchy::

    PalmPrepError                        ← catch-all base
    ├── ValidationError                  ← bad AOI, missing columns, etc.
    │   ├── ColumnNotFoundError          ← attribute column missing
    │   └── CRSError                     ← undefined / unknown CRS
    ├── AcquisitionFailure               ← tile download failed
    ├── GeometryRepairFailed             ← all repair strategies exhausted
    ├── EmptyResultError                 ← nothing left to process
    │   └── NoIntersectingTiles          ← AOI outside every source tile
    ├── RasterError                      ← rasterio / numpy raster issues
    └── OutputWriteError                 ← cannot write to output path

Usage::

    from shared.python.exceptions import NoIntersectingTiles

    raise NoIntersectingTiles("WSF", aoi.bounds)
"""

from __future__ import annotations

from typing import Sequence


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


class PalmPrepError(Exception):
    """Base exception for all PALM Prep stages.

    Catch this to handle any pipeline error without caring about the
    exact subtype.

    Args:
        message: Human-readable description of the error.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class ValidationError(PalmPrepError):
    """Raised when an input fails validation before any I/O happens.

    Covers malformed AOIs, wrong geometry types, undefined CRS and
    missing attribute columns.
    """


class ColumnNotFoundError(ValidationError):
    """Raised when an expected attribute column is absent.

    Args:
        column: The name of the missing column.
        available: Column names that ARE present, used to generate a
                   helpful error message.

    Example::

        raise ColumnNotFoundError("function", gdf.columns.tolist())
    """

    def __init__(self, column: str, available: list[str]) -> None:
        available_str = ", ".join(f"'{c}'" for c in available)
        super().__init__(
            f"Column '{column}' not found. Available columns: {available_str}"
        )
        self.column: str = column
        self.available: list[str] = available


class CRSError(ValidationError):
    """Raised when a coordinate reference system is missing or cannot be
    parsed.

    Args:
        crs_string: The raw CRS value that caused the error, or ``None``
                    when the dataset has no CRS at all.
    """

    def __init__(self, crs_string: str | None) -> None:
        if crs_string is None:
            message = "Dataset has no defined CRS. Assign one before processing."
        else:
            message = (
                f"Invalid or unrecognised CRS: '{crs_string}'. "
                "Use an EPSG code (e.g. 'EPSG:25832') or a valid WKT/PROJ string."
            )
        super().__init__(message)
        self.crs_string: str | None = crs_string


# ---------------------------------------------------------------------------
# Acquisition
# ---------------------------------------------------------------------------


class AcquisitionFailure(PalmPrepError):
    """Raised when a tile cannot be downloaded.

    Bulk loops catch this per tile, log it and move on; single mandatory
    downloads let it propagate.

    Args:
        tile_key: Filename of the tile that failed.
        url: Full URL that was requested.
        status_code: HTTP status returned, or ``None`` for transport
                     errors (timeouts, refused connections).
        reason: Short explanation.
    """

    def __init__(
        self,
        tile_key: str,
        url: str,
        status_code: int | None = None,
        reason: str = "",
    ) -> None:
        status = f"HTTP {status_code}" if status_code is not None else "no response"
        detail = f": {reason}" if reason else ""
        super().__init__(f"Failed to download tile '{tile_key}' ({status}){detail} [{url}]")
        self.tile_key: str = tile_key
        self.url: str = url
        self.status_code: int | None = status_code
        self.reason: str = reason


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


class GeometryRepairFailed(PalmPrepError):
    """Raised when bulk cast, per-feature repair and external conversion
    all failed to produce polygon geometry.

    Args:
        indices: Positional indices of the features that stayed broken.
        command: A concrete external command the user can run to convert
                 the layer manually.
        max_listed: How many indices to include in the message.
    """

    def __init__(
        self,
        indices: Sequence[int],
        command: str,
        max_listed: int = 10,
    ) -> None:
        listed = ", ".join(str(i) for i in list(indices)[:max_listed])
        more = " ..." if len(indices) > max_listed else ""
        super().__init__(
            f"Geometries could not be converted to polygons "
            f"(feature indexes: {listed}{more}). Automatic repair and "
            f"external conversion both failed. Convert the layer externally, "
            f"e.g. `{command}`, or supply pre-cast (multi)polygons."
        )
        self.indices: list[int] = list(indices)
        self.command: str = command


# ---------------------------------------------------------------------------
# Empty results
# ---------------------------------------------------------------------------


class EmptyResultError(PalmPrepError):
    """Raised when a stage would hand an empty result to the next one.

    Zero usable tiles, zero features after clipping, or an all-nodata
    mosaic all end up here.
    """


class NoIntersectingTiles(EmptyResultError):
    """Raised when no tile of a source grid intersects the AOI.

    Args:
        grid_name: Name of the tile grid (e.g. ``"WSF"``).
        bounds: AOI bounds in the grid's native CRS.
    """

    def __init__(self, grid_name: str, bounds: tuple[float, float, float, float]) -> None:
        bounds_str = ", ".join(f"{b:.4f}" for b in bounds)
        super().__init__(f"No {grid_name} tiles intersect the AOI (bounds: {bounds_str}).")
        self.grid_name: str = grid_name
        self.bounds: tuple[float, float, float, float] = bounds


# ---------------------------------------------------------------------------
# Raster
# ---------------------------------------------------------------------------


class RasterError(PalmPrepError):
    """Raised for general raster processing failures (rasterio / numpy)."""


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class OutputWriteError(PalmPrepError):
    """Raised when a stage cannot write its output to disk.

    Args:
        output_path: String representation of the path that failed.
        reason: Underlying OS or library error message.
    """

    def __init__(self, output_path: str, reason: str) -> None:
        super().__init__(
            f"Failed to write output to '{output_path}': {reason}"
        )
        self.output_path: str = output_path
        self.reason: str = reason
