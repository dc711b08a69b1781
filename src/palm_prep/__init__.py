"""
PALM Prep
==========
Prepares terrain, land cover, settlement-age and building inputs for
the PALM-4U urban-climate model: tiled acquisition for an AOI, geometry
repair, building classification and grid alignment.

Public API::

    from palm_prep import StaticDriverPipeline, load_config
"""

from palm_prep.align import align_rasters, build_reference_grid, snap_bounds
from palm_prep.aoi import AreaOfInterest, load_aoi
from palm_prep.buildings import BuildingSplit, process_building_vectors
from palm_prep.classify import assign_building_types, classify_building, extract_zonal_max
from palm_prep.config import PipelineConfig, load_config
from palm_prep.normalize import GeometryNormalizer
from palm_prep.pipeline import StaticDriverPipeline
from palm_prep.raster import AlignedRasterSet, GridSpec, RasterLayer
from palm_prep.tiles import LOD2_GRID, WSF_GRID, Tile, TileGrid, index_tiles

__all__ = [
    "StaticDriverPipeline",
    "PipelineConfig",
    "load_config",
    "AreaOfInterest",
    "load_aoi",
    "TileGrid",
    "Tile",
    "WSF_GRID",
    "LOD2_GRID",
    "index_tiles",
    "GeometryNormalizer",
    "BuildingSplit",
    "process_building_vectors",
    "extract_zonal_max",
    "classify_building",
    "assign_building_types",
    "RasterLayer",
    "GridSpec",
    "AlignedRasterSet",
    "snap_bounds",
    "build_reference_grid",
    "align_rasters",
]
__version__ = "1.0.0"
