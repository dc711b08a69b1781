"""
PALM Prep — Tile Grid Indexer
==============================
Maps an AOI polygon onto the tiles of a regular source grid.

Two grids are in use:

* ``WSF_GRID``  — 2° × 2° tiles in WGS84 (settlement-year proxy).
* ``LOD2_GRID`` — 2 km × 2 km tiles in ETRS89 / UTM 32N (building models).

Both follow the same convention: tile origins are integer multiples of
the grid spacing, and a tile is named after its lower-left corner.

Usage::

    from palm_prep.tiles import LOD2_GRID, index_tiles

    aoi_utm = aoi.to_crs(LOD2_GRID.crs)
    for tile in index_tiles(aoi_utm.geometry, LOD2_GRID):
        print(tile.key)        # e.g. "690_5334.gml"
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

from shared.python.exceptions import NoIntersectingTiles, ValidationError

logger = logging.getLogger("palm_prep.tiles")


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TileGrid:
    """Naming and spacing convention of a source tile grid.

    Attributes:
        name: Short label used in logs and errors.
        spacing: Tile edge length in CRS units.
        crs: Native CRS of the grid (anything pyproj accepts).
        key_template: ``str.format`` template with ``{x}`` / ``{y}``.
        index_divisor: Origins are floor-divided by this before naming.
    """

    name: str
    spacing: float
    crs: str
    key_template: str
    index_divisor: float = 1

    def key_for(self, x: float, y: float) -> str:
        """Build the tile filename for origin ``(x, y)``."""
        return self.key_template.format(
            x=int(x // self.index_divisor),
            y=int(y // self.index_divisor),
        )


@dataclass(frozen=True)
class Tile:
    """One grid cell identified by its lower-left origin."""

    x: float
    y: float
    spacing: float
    key: str

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        return (self.x, self.y, self.x + self.spacing, self.y + self.spacing)

    def rectangle(self) -> BaseGeometry:
        return box(*self.bounds)


WSF_GRID = TileGrid(
    name="WSF",
    spacing=2,
    crs="EPSG:4326",
    key_template="WSFevolution_v1_{x}_{y}.tif",
)

LOD2_GRID = TileGrid(
    name="LOD2",
    spacing=2000,
    crs="EPSG:25832",
    key_template="{x}_{y}.gml",
    index_divisor=1000,
)


# ---------------------------------------------------------------------------
# Indexing
# ---------------------------------------------------------------------------


def candidate_origins(lo: float, hi: float, spacing: float) -> list[float]:
    """Grid origins covering the interval ``[lo, hi]`` along one axis.

    The first origin is ``lo`` floored to the grid; the last is the
    multiple of *spacing* directly below ``hi`` ceiled to the grid.
    """
    start = math.floor(lo / spacing) * spacing
    stop = math.ceil(hi / spacing) * spacing - spacing
    if stop < start:
        stop = start
    count = int(round((stop - start) / spacing)) + 1
    return [start + i * spacing for i in range(count)]


def index_tiles(geometry: BaseGeometry, grid: TileGrid) -> list[Tile]:
    """Return the tiles of *grid* whose rectangle intersects *geometry*.

    Boundary contact counts, so a rectangle meeting the AOI only along
    an edge or corner is kept.  Enumeration runs x-major, y-minor so the output order is
    deterministic for the downstream first-wins mosaic.

    Args:
        geometry: AOI polygon, already in the grid's native CRS.
        grid: The target tile grid.

    Returns:
        Intersecting tiles in enumeration order.

    Raises:
        ValidationError: If *geometry* is empty or the spacing is not positive.
        NoIntersectingTiles: If no candidate rectangle intersects the AOI.
    """
    if grid.spacing <= 0:
        raise ValidationError(f"Grid spacing must be positive, got {grid.spacing}.")
    if geometry is None or geometry.is_empty:
        raise ValidationError("Cannot index tiles for an empty geometry.")

    minx, miny, maxx, maxy = geometry.bounds
    xs = candidate_origins(minx, maxx, grid.spacing)
    ys = candidate_origins(miny, maxy, grid.spacing)
    logger.debug(
        "%s grid: %d x %d candidate origin(s)", grid.name, len(xs), len(ys)
    )

    tiles: list[Tile] = []
    for x in xs:
        for y in ys:
            rect = box(x, y, x + grid.spacing, y + grid.spacing)
            if rect.intersects(geometry):
                tiles.append(Tile(x=x, y=y, spacing=grid.spacing, key=grid.key_for(x, y)))

    if not tiles:
        raise NoIntersectingTiles(grid.name, (minx, miny, maxx, maxy))

    logger.info("%d %s tile(s) intersect the AOI", len(tiles), grid.name)
    return tiles


def tile_keys(geometry: BaseGeometry, grid: TileGrid) -> list[str]:
    """Convenience wrapper returning only the tile filenames."""
    return [tile.key for tile in index_tiles(geometry, grid)]
