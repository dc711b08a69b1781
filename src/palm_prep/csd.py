"""
PALM Prep — CSD Configuration Writer
=====================================
Writes the YAML configuration consumed by the PALM-4U static-driver
generator (``palm_csd``).

The file has five sections: ``attributes``, ``settings``, ``output``,
``input_root`` and ``domain_root``.  Input files are discovered in the
input directory by case-insensitive pattern matching; fields without a
match are written as commented-out placeholders so the user can see
what is missing.

Usage::

    from palm_prep.csd import CsdAttributes, write_csd_configuration

    path = write_csd_configuration(
        prefix="munich",
        output_dir=Path("output"),
        input_root=Path("output"),
        attributes=CsdAttributes(author="Jane Doe, jane@example.org"),
    )
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path

import yaml

from palm_prep.raster import GridSpec
from shared.python.exceptions import OutputWriteError
from shared.python.validators import Validators

logger = logging.getLogger("palm_prep.csd")

_RULE = "#---------------------------------------------------------------------------#"

# (group comment, [(field, discovery pattern), ...])
INPUT_FIELDS: tuple[tuple[str, tuple[tuple[str, str], ...]], ...] = (
    ("terrain", (("file_zt", "terrain_height|zt"),)),
    (
        "buildings LOD1",
        (
            ("file_buildings_2d", "building_height|buildings_2d"),
            ("file_building_id", "building_id"),
            ("file_building_type", "building_type"),
        ),
    ),
    (
        "bridges",
        (
            ("file_bridges_2d", "bridges_height|bridges_2d"),
            ("file_bridges_id", "bridges_id"),
        ),
    ),
    (
        "vegetation",
        (
            ("file_vegetation_type", "vegetation_type"),
            ("file_vegetation_height", "vegetation_height"),
        ),
    ),
    (
        "resolved vegetation (trees)",
        (
            ("file_tree_height", "tree_height"),
            ("file_tree_crown_diameter", "tree_crown_diameter"),
            ("file_tree_trunk_diameter", "tree_trunk_diameter"),
            ("file_tree_type", "tree_type"),
            ("file_lai", "lai|leaf_area_index"),
        ),
    ),
    ("water", (("file_water_type", "water_type"),)),
    (
        "pavement",
        (
            ("file_pavement_type", "pavement_type"),
            ("file_soil_type", "soil_type"),
        ),
    ),
)


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass
class CsdAttributes:
    author: str | None = None
    contact_person: str | None = None
    acronym: str | None = None
    comment: str | None = None
    data_content: str | None = None
    location: str | None = None
    site: str | None = None
    institution: str | None = None
    palm_version: str | None = None
    references: str | None = None
    source: str | None = None
    origin_time: str | None = None


@dataclass
class CsdSettings:
    epsg: int = 25832
    season: str = "summer"


@dataclass
class CsdOutput:
    path: str | None = None
    file_out: str | None = None
    version: int = 1


@dataclass
class CsdDomain:
    """Root domain.  Must lie completely inside the data extent."""

    pixel_size: float = 1.0
    origin_x: float | None = None
    origin_y: float | None = None
    nx: int | None = None
    ny: int | None = None
    dz: float = 1.0
    bridge_depth: float = 3.0
    buildings_3d: bool = True
    street_trees: bool = True
    overhanging_trees: bool = True
    generate_vegetation_patches: bool = True

    @classmethod
    def from_grid(cls, grid: GridSpec, **overrides: object) -> "CsdDomain":
        """Domain matching *grid*, with the lower-left corner as origin."""
        minx, miny, _, _ = grid.bounds
        values: dict = {
            "pixel_size": grid.resolution[0],
            "origin_x": minx,
            "origin_y": miny,
            "nx": grid.width,
            "ny": grid.height,
        }
        values.update(overrides)
        return cls(**values)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def find_file(pattern: str, input_dir: Path) -> str | None:
    """First filename in *input_dir* (sorted) matching *pattern*, ignoring case."""
    regex = re.compile(pattern, flags=re.IGNORECASE)
    for path in sorted(Path(input_dir).iterdir()):
        if path.is_file() and regex.search(path.name):
            return path.name
    return None


def discover_input_files(
    input_dir: Path, overrides: dict[str, str] | None = None
) -> dict[str, str | None]:
    """Resolve every ``input_root`` file field.

    Explicit *overrides* win over discovery.
    """
    overrides = overrides or {}
    found: dict[str, str | None] = {}
    for _, group in INPUT_FIELDS:
        for name, pattern in group:
            found[name] = overrides.get(name) or find_file(pattern, input_dir)
    return found


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _dump(section: str, values: dict) -> str:
    return yaml.safe_dump({section: values}, sort_keys=False, default_flow_style=False, allow_unicode=True)


def _scalar(value: object) -> str:
    text = yaml.safe_dump(value, default_flow_style=True)
    return text.replace("\n...\n", "").strip()


def _header(title: str) -> str:
    return f"{_RULE}\n# {title}\n{_RULE}\n"


def render_csd_configuration(
    attributes: CsdAttributes,
    settings: CsdSettings,
    output: CsdOutput,
    input_root: Path,
    files: dict[str, str | None],
    domain: CsdDomain,
) -> str:
    """Build the YAML text; see :func:`write_csd_configuration`."""
    acronym = attributes.acronym or ""
    parts = [
        "# -*- coding: utf-8 -*-\n",
        _header(f"PALM-4U static driver configuration for {acronym} ({domain.pixel_size:g} m resolution)"),
        _header("Attributes section"),
        _dump("attributes", asdict(attributes)),
        "\n",
        _header("Settings section"),
        _dump("settings", asdict(settings)),
        "\n",
        _header("Output section"),
        _dump("output", asdict(output)),
        "\n",
        _header("Input section"),
        "input_root:\n",
        "  # input directory\n",
        f"  path: {_scalar(str(input_root))}\n",
    ]
    for comment, group in INPUT_FIELDS:
        parts.append(f"\n  # {comment}\n")
        for name, _ in group:
            value = files.get(name)
            if value:
                parts.append(f"  {name}: {_scalar(value)}\n")
            else:
                parts.append(f"  # {name}: not found\n")
    parts += [
        "\n",
        _header(
            "Domain definition (root domain)\n"
            "# NOTE:\n"
            "# The domain defined here must lie completely within the data.\n"
            "# PALM-4U cannot handle non-rectangular domains"
        ),
        _dump("domain_root", asdict(domain)),
    ]
    return "".join(parts)


def write_csd_configuration(
    prefix: str,
    output_dir: Path,
    input_root: Path,
    attributes: CsdAttributes | None = None,
    settings: CsdSettings | None = None,
    output: CsdOutput | None = None,
    domain: CsdDomain | None = None,
    files: dict[str, str] | None = None,
) -> Path:
    """Write ``{prefix}_csd_configuration.yml`` into *output_dir*.

    Args:
        prefix: Filename prefix.
        output_dir: Existing directory receiving the YAML file.
        input_root: Existing directory searched for input rasters.
        attributes: Global file attributes.
        settings: EPSG code and season.
        output: Output path / name / version for ``palm_csd``.
        domain: Root-domain definition.
        files: Explicit filenames per ``file_*`` field, bypassing
               discovery for those fields.

    Returns:
        Path of the written file.

    Raises:
        ValidationError: If either directory does not exist.
        OutputWriteError: If the file cannot be written.
    """
    output_dir = Path(output_dir)
    input_root = Path(input_root)
    Validators.assert_directory_exists(output_dir)
    Validators.assert_directory_exists(input_root)

    resolved = discover_input_files(input_root, files)
    missing = [name for name, value in resolved.items() if value is None]
    if missing:
        logger.warning("No input file found for: %s", ", ".join(missing))

    text = render_csd_configuration(
        attributes or CsdAttributes(),
        settings or CsdSettings(),
        output or CsdOutput(),
        input_root,
        resolved,
        domain or CsdDomain(),
    )

    path = output_dir / f"{prefix}_csd_configuration.yml"
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise OutputWriteError(str(path), str(exc)) from exc
    logger.info("Configuration file created: %s", path)
    return path
