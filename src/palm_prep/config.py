"""
PALM Prep — Configuration
==========================
Dataclasses describing one pipeline run and a JSON loader for them.

Every value that used to be baked into processing code (remote base
URLs, function codes, retry policy, output prefix) lives here and is
threaded through the calls that need it.

Example config file::

    {
        "aoi_path": "data/aoi.gpkg",
        "output_dir": "output",
        "cache_dir": "cache",
        "prefix": "munich",
        "target_epsg": 25832,
        "resolution": 10,
        "rasters": {"DEM": "data/dem.tif", "LC": "data/landcover.tif"},
        "buildings_path": "data/buildings.gpkg",
        "http": {"timeout": 60, "max_retries": 3, "backoff_factor": 2.0},
        "buildings": {"function_column": "function"}
    }
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from shared.python.exceptions import ValidationError

DEFAULT_WSF_BASE_URL = "https://download.geoservice.dlr.de/WSF_EVO/files/"
DEFAULT_LOD2_BASE_URL = "https://download1.bayernwolke.de/a/lod2/citygml/"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HttpConfig:
    """Retry and timeout policy for tile downloads.

    Attributes:
        timeout: Per-request timeout in seconds.
        max_retries: Attempts per tile (1 = no retry).
        backoff_factor: Base delay in seconds; attempt *n* waits
                        ``backoff_factor * 2 ** (n - 1)``.
        user_agent: Value of the ``User-Agent`` header.
    """

    timeout: float = 60.0
    max_retries: int = 3
    backoff_factor: float = 2.0
    user_agent: str = "palm-prep/1.0"


@dataclass(frozen=True)
class SourceConfig:
    """Remote locations of the tiled source datasets."""

    wsf_base_url: str = DEFAULT_WSF_BASE_URL
    lod2_base_url: str = DEFAULT_LOD2_BASE_URL


@dataclass(frozen=True)
class BuildingConfig:
    """Attribute names and ALKIS function codes used for buildings.

    Attributes:
        function_column: Column holding the building function code.
        height_column: Column holding the measured building height.
        bridge_code: Function code identifying bridges.
        residential_code: Function code identifying residential buildings.
    """

    function_column: str = "function"
    height_column: str = "measuredHeight"
    bridge_code: str = "53001_1800"
    residential_code: str = "31001_1000"


@dataclass
class PipelineConfig:
    """Full configuration for :class:`~palm_prep.pipeline.StaticDriverPipeline`.

    Attributes:
        aoi_path: Vector file holding the AOI polygon(s).
        output_dir: Directory receiving the exported GeoTIFFs.
        cache_dir: Directory used to memoize downloaded tiles.
        prefix: Filename prefix for every exported raster.
        target_epsg: EPSG code of the working / output CRS.
        resolution: Output cell size in target CRS units.
        rasters: Extra input rasters by layer name, e.g. ``DEM``, ``LC``.
        categorical_pattern: Regex selecting layers resampled with
                             nearest neighbour instead of bilinear.
        nodata: Nodata marker written to aligned float rasters.
        download_wsf: Fetch the settlement-year proxy tiles.
        download_lod2: Fetch the LOD2 building tiles.
        buildings_path: Local building footprint file.  When set it is
                        used instead of the LOD2 download.
        http: Download retry / timeout policy.
        sources: Remote base URLs.
        buildings: Building attribute conventions.
    """

    aoi_path: Path
    output_dir: Path = Path("output")
    cache_dir: Path = Path("cache")
    prefix: str = "palm"
    target_epsg: int = 25832
    resolution: float = 10.0
    rasters: dict[str, Path] = field(default_factory=dict)
    categorical_pattern: str = "LC|WSF"
    nodata: float = -9999.0
    download_wsf: bool = True
    download_lod2: bool = True
    buildings_path: Path | None = None
    http: HttpConfig = field(default_factory=HttpConfig)
    sources: SourceConfig = field(default_factory=SourceConfig)
    buildings: BuildingConfig = field(default_factory=BuildingConfig)

    @property
    def target_crs(self) -> str:
        return f"EPSG:{self.target_epsg}"


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _section(cls: type, raw: Any, name: str) -> Any:
    """Build a nested config dataclass, rejecting unknown keys."""
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ValidationError(f"Config section '{name}' must be an object.")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValidationError(
            f"Unknown key(s) in config section '{name}': {', '.join(unknown)}"
        )
    try:
        return cls(**raw)
    except TypeError as exc:
        raise ValidationError(f"Invalid config section '{name}': {exc}") from exc


def parse_config(raw: dict[str, Any], base_dir: Path | None = None) -> PipelineConfig:
    """Turn a decoded JSON object into a :class:`PipelineConfig`.

    Relative paths are resolved against *base_dir* when it is given.

    Raises:
        ValidationError: If a required key is missing or a value is invalid.
    """
    if "aoi_path" not in raw:
        raise ValidationError("Config is missing required key 'aoi_path'.")

    def _path(value: Any) -> Path:
        p = Path(value)
        if base_dir is not None and not p.is_absolute():
            p = base_dir / p
        return p

    http = _section(HttpConfig, raw.get("http"), "http")
    if http.max_retries < 1:
        raise ValidationError("http.max_retries must be at least 1.")
    if http.timeout <= 0:
        raise ValidationError("http.timeout must be positive.")

    try:
        resolution = float(raw.get("resolution", 10.0))
        target_epsg = int(raw.get("target_epsg", 25832))
        nodata = float(raw.get("nodata", -9999.0))
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid numeric value in config: {exc}") from exc
    if resolution <= 0:
        raise ValidationError(f"Resolution must be positive, got {resolution}.")

    rasters_raw = raw.get("rasters", {})
    if not isinstance(rasters_raw, dict):
        raise ValidationError("Config key 'rasters' must map layer names to paths.")

    return PipelineConfig(
        aoi_path=_path(raw["aoi_path"]),
        output_dir=_path(raw.get("output_dir", "output")),
        cache_dir=_path(raw.get("cache_dir", "cache")),
        prefix=str(raw.get("prefix", "palm")),
        target_epsg=target_epsg,
        resolution=resolution,
        rasters={name: _path(p) for name, p in rasters_raw.items()},
        categorical_pattern=str(raw.get("categorical_pattern", "LC|WSF")),
        nodata=nodata,
        download_wsf=bool(raw.get("download_wsf", True)),
        download_lod2=bool(raw.get("download_lod2", True)),
        buildings_path=_path(raw["buildings_path"]) if raw.get("buildings_path") else None,
        http=http,
        sources=_section(SourceConfig, raw.get("sources"), "sources"),
        buildings=_section(BuildingConfig, raw.get("buildings"), "buildings"),
    )


def load_config(config_path: Path) -> PipelineConfig:
    """Parse a JSON configuration file into a :class:`PipelineConfig`.

    Relative paths inside the file are resolved against the file's
    directory.

    Args:
        config_path: Path to the JSON config file.

    Returns:
        A fully populated ``PipelineConfig`` instance.

    Raises:
        ValidationError: If the file cannot be read, parsed or validated.
    """
    config_path = Path(config_path)
    try:
        raw: dict[str, Any] = json.loads(config_path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        raise ValidationError(
            f"Failed to read config file '{config_path}': {exc}"
        ) from exc
    if not isinstance(raw, dict):
        raise ValidationError(f"Config file '{config_path}' must contain a JSON object.")
    return parse_config(raw, base_dir=config_path.parent)
