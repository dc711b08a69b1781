"""
PALM Prep — Pipeline Orchestrator
==================================
Runs the full static-driver preparation for one AOI.  Inherits from
:class:`~shared.python.base_tool.GeoTool` and implements the Template
Method pattern.

Stages::

    AOI ──► WSF tiles ──► mosaic/clip ───────────────┐
     │                                               ▼
     ├──► LOD2 tiles ──► normalize ──► clip/ID ──► classify ──► rasterize ─┐
     │                                                                     ▼
     └──► DEM / LC / WSF ──► align ──► land-cover reclass ──────────────► export ──► CSD YAML

Usage::

    from pathlib import Path
    from palm_prep.pipeline import StaticDriverPipeline

    pipeline = StaticDriverPipeline(
        input_path=Path("config.json"),
        output_path=Path("output/"),
        verbose=True,
    )
    pipeline.run()
"""

from __future__ import annotations

import logging
from pathlib import Path

import geopandas as gpd
import pandas as pd

from palm_prep.align import align_rasters, build_reference_grid
from palm_prep.aoi import AreaOfInterest, load_aoi
from palm_prep.buildings import process_building_vectors
from palm_prep.classify import assign_building_types
from palm_prep.config import PipelineConfig, load_config
from palm_prep.csd import CsdDomain, CsdSettings, write_csd_configuration
from palm_prep.export import export_rasters
from palm_prep.fetcher import TileFetcher
from palm_prep.landcover import reclassify_land_cover
from palm_prep.mosaic import clip_raster, load_vector_tiles, mosaic_rasters
from palm_prep.normalize import GeometryNormalizer
from palm_prep.raster import AlignedRasterSet, RasterLayer
from palm_prep.rasterize import rasterize_bridge_layers, rasterize_building_layers
from palm_prep.tiles import LOD2_GRID, WSF_GRID, index_tiles
from shared.python.base_tool import GeoTool
from shared.python.exceptions import ValidationError
from shared.python.validators import Validators

logger = logging.getLogger("palm_prep.pipeline")

# aligned inputs renamed on export so the CSD writer can discover them
EXPORT_NAMES = {"DEM": "terrain_height"}


class StaticDriverPipeline(GeoTool):
    """Acquire, repair, classify, align and export PALM static inputs.

    Args:
        input_path: Path to the JSON configuration file.
        output_path: Output directory.  Defaults to ``output_dir`` from
            the configuration.
        config: Pre-built configuration; skips reading *input_path*.
        normalizer: Geometry normalizer used for LOD2 features.
        verbose: Enable debug-level logging.

    Attributes:
        config: Parsed pipeline configuration.
        aoi: The loaded AOI.
        buildings: Classified buildings, or ``None``.
        bridges: Clipped bridges, or ``None``.
        aligned: Aligned input rasters.
        exports: One row per written GeoTIFF.
        csd_path: Path of the written CSD configuration.
    """

    def __init__(
        self,
        input_path: Path,
        output_path: Path | None = None,
        *,
        config: PipelineConfig | None = None,
        normalizer: GeometryNormalizer | None = None,
        verbose: bool = False,
    ) -> None:
        super().__init__(
            input_path=input_path,
            output_path=output_path if output_path is not None else Path("output"),
            verbose=verbose,
        )
        self._output_given = output_path is not None
        self.config: PipelineConfig | None = config
        self.normalizer = normalizer or GeometryNormalizer()
        self.aoi: AreaOfInterest | None = None
        self.wsf: RasterLayer | None = None
        self.buildings: gpd.GeoDataFrame | None = None
        self.bridges: gpd.GeoDataFrame | None = None
        self.aligned: AlignedRasterSet | None = None
        self.exports: pd.DataFrame | None = None
        self.csd_path: Path | None = None

    # ------------------------------------------------------------------
    # GeoTool interface
    # ------------------------------------------------------------------

    def validate_inputs(self) -> None:
        """Load and check the configuration, AOI and input rasters.

        Raises:
            ValidationError: On a missing/invalid config, AOI or raster.
            CRSError: If the target EPSG code or the AOI CRS is invalid.
        """
        if self.config is None:
            Validators.assert_file_exists(self.input_path)
            self.config = load_config(self.input_path)

        if self._output_given:
            self.config.output_dir = self.output_path
        else:
            self.output_path = self.config.output_dir

        Validators.assert_crs_valid(self.config.target_crs)
        for name, path in self.config.rasters.items():
            Validators.assert_file_exists(path)
            logger.debug("Input raster %s: %s", name, path)
        if self.config.buildings_path is not None:
            Validators.assert_file_exists(self.config.buildings_path)

        if not (
            self.config.rasters
            or self.config.buildings_path is not None
            or self.config.download_wsf
            or self.config.download_lod2
        ):
            raise ValidationError(
                "Nothing to do: no input rasters or buildings configured and both downloads are disabled."
            )

        self.aoi = load_aoi(self.config.aoi_path)
        Validators.assert_output_dir_writable(self.output_path)
        logger.info(
            "Configuration validated: %d input raster(s), WSF=%s, LOD2=%s, buildings=%s",
            len(self.config.rasters),
            self.config.download_wsf,
            self.config.download_lod2,
            self.config.buildings_path,
        )

    def process(self) -> None:
        """Run every stage in order.

        Nothing is written to the output directory until all inputs
        have been acquired and aligned.
        """
        assert self.config is not None and self.aoi is not None, "Call validate_inputs() first."

        if self.config.download_wsf:
            with self.stage("wsf"):
                self.wsf = self._acquire_wsf()
        if self.config.buildings_path is not None or self.config.download_lod2:
            with self.stage("buildings"):
                self._process_buildings()

        rasters: dict[str, object] = dict(self.config.rasters)
        if self.wsf is not None:
            rasters["WSF"] = self.wsf

        layers: dict[str, RasterLayer] = {}
        with self.stage("align"):
            if rasters:
                self.aligned = align_rasters(
                    self.aoi,
                    self.config.target_crs,
                    self.config.resolution,
                    rasters,  # type: ignore[arg-type]
                    categorical_pattern=self.config.categorical_pattern,
                    nodata=self.config.nodata,
                )
                layers.update(
                    {EXPORT_NAMES.get(name, name): layer for name, layer in self.aligned.layers.items()}
                )
                if "LC" in self.aligned:
                    layers.update(reclassify_land_cover(self.aligned["LC"]))
                grid = self.aligned.grid
            else:
                grid = build_reference_grid(self.aoi, self.config.target_crs, self.config.resolution)

            if self.buildings is not None and not self.buildings.empty:
                layers.update(
                    rasterize_building_layers(self.buildings, grid, self.config.buildings, self.config.nodata)
                )
            if self.bridges is not None and not self.bridges.empty:
                layers.update(
                    rasterize_bridge_layers(self.bridges, grid, self.config.buildings, self.config.nodata)
                )

        if not layers:
            raise ValidationError("No output layers were produced.")

        with self.stage("export"):
            resolution = int(round(self.config.resolution))
            self.exports = export_rasters(layers, self.output_path, self.config.prefix, resolution)
            self.csd_path = write_csd_configuration(
                prefix=self.config.prefix,
                output_dir=self.output_path,
                input_root=self.output_path,
                settings=CsdSettings(epsg=self.config.target_epsg),
                domain=CsdDomain.from_grid(grid),
            )
        logger.info("Pipeline complete: %d raster(s) exported.", len(self.exports))

    # ------------------------------------------------------------------
    # Stage helpers
    # ------------------------------------------------------------------

    def _acquire_wsf(self) -> RasterLayer:
        """Download, mosaic and clip the WSF Evolution tiles."""
        assert self.config is not None and self.aoi is not None
        aoi_wgs84 = self.aoi.to_crs(WSF_GRID.crs)
        keys = [t.key for t in index_tiles(aoi_wgs84.geometry, WSF_GRID)]

        fetcher = TileFetcher(self.config.sources.wsf_base_url, self.config.http)
        report = fetcher.fetch_many(keys, self.config.cache_dir / "wsf")
        tiles = [RasterLayer.from_path(p) for p in report.paths]
        return clip_raster(mosaic_rasters(tiles), aoi_wgs84)

    def _process_buildings(self) -> None:
        """Load, repair, clip, split and classify building features.

        A configured ``buildings_path`` is read directly; otherwise the
        LOD2 tiles covering the AOI are downloaded.
        """
        assert self.config is not None and self.aoi is not None
        if self.config.buildings_path is not None:
            logger.info("Reading building features from %s", self.config.buildings_path)
            paths = [self.config.buildings_path]
        else:
            aoi_lod2 = self.aoi.to_crs(LOD2_GRID.crs)
            keys = [t.key for t in index_tiles(aoi_lod2.geometry, LOD2_GRID)]
            fetcher = TileFetcher(self.config.sources.lod2_base_url, self.config.http)
            paths = fetcher.fetch_many(keys, self.config.cache_dir / "lod2").paths

        raw = load_vector_tiles(paths)
        normalized = self.normalizer.normalize(raw)
        split = process_building_vectors(
            normalized, self.aoi, self.config.target_crs, self.config.buildings
        )
        self.buildings = assign_building_types(split.buildings, self.wsf, self.config.buildings)
        self.bridges = split.bridges
