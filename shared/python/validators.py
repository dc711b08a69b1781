"""
PALM Prep — Shared Input Validators
====================================
Precondition checks that raise a typed exception from
:mod:`shared.python.exceptions` instead of returning a flag::

    Validators.assert_file_exists(config.aoi_path)
    Validators.assert_crs_valid(config.target_crs)
    Validators.assert_columns_exist(buildings, ["function"])
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from pyproj import CRS
from pyproj.exceptions import CRSError as ProjCRSError

from shared.python.exceptions import (
    ColumnNotFoundError,
    CRSError,
    OutputWriteError,
    RasterError,
    ValidationError,
)

POLYGONAL_TYPES = ("Polygon", "MultiPolygon")


class Validators:
    """Namespace of static checks; never instantiated."""

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @staticmethod
    def assert_file_exists(path: Path) -> None:
        """Raise ``ValidationError`` unless *path* is an existing file."""
        path = Path(path)
        if path.is_dir():
            raise ValidationError(f"Expected a file, got directory '{path}'.")
        if not path.is_file():
            raise ValidationError(f"Input file not found: '{path}'.")

    @staticmethod
    def assert_directory_exists(path: Path) -> None:
        """Raise ``ValidationError`` unless *path* is an existing directory."""
        path = Path(path)
        if not path.exists():
            raise ValidationError(f"Directory not found: '{path}'.")
        if not path.is_dir():
            raise ValidationError(f"Expected a directory, got file '{path}'.")

    @staticmethod
    def assert_output_dir_writable(output_dir: Path) -> None:
        """Create *output_dir* with its parents.

        Raises:
            OutputWriteError: If the directory cannot be created.
        """
        output_dir = Path(output_dir)
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OutputWriteError(str(output_dir), str(exc)) from exc

    # ------------------------------------------------------------------
    # CRS
    # ------------------------------------------------------------------

    @staticmethod
    def assert_crs_valid(crs: object) -> None:
        """Raise ``CRSError`` if *crs* is missing or unknown to pyproj.

        Any input accepted by :meth:`pyproj.CRS.from_user_input` passes:
        ``"EPSG:25832"``, ``25832``, WKT, or a CRS object.
        """
        if crs is None:
            raise CRSError(None)
        try:
            CRS.from_user_input(crs)
        except (ProjCRSError, TypeError, ValueError) as exc:
            raise CRSError(str(crs)) from exc

    # ------------------------------------------------------------------
    # Vector checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_columns_exist(
        df: object,  # pandas / geopandas DataFrame
        required_columns: Sequence[str],
    ) -> None:
        """Assert that all *required_columns* are present in *df*.

        Raises:
            ColumnNotFoundError: On the first missing column found.
        """
        available = list(df.columns)  # type: ignore[union-attr]
        for col in required_columns:
            if col not in available:
                raise ColumnNotFoundError(col, available)

    @staticmethod
    def assert_polygonal(geom_types: Sequence[str], label: str = "AOI") -> None:
        """Assert that at least one geometry is a Polygon or MultiPolygon
        and none is of another type.

        Args:
            geom_types: Geometry type names, e.g. ``gdf.geom_type``.
            label: Dataset name used in the error message.

        Raises:
            ValidationError: If the collection is empty or contains a
                non-polygonal geometry.
        """
        types = [t for t in geom_types if t is not None]
        if not types:
            raise ValidationError(f"{label} contains no geometry.")
        bad = sorted({t for t in types if t not in POLYGONAL_TYPES})
        if bad:
            raise ValidationError(
                f"{label} geometry must be Polygon or MultiPolygon, "
                f"found: {', '.join(bad)}."
            )

    # ------------------------------------------------------------------
    # Raster checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_same_grid(layers: dict, label: str = "aligned rasters") -> None:
        """Assert that every layer shares origin, resolution, CRS and size.

        Args:
            layers: Mapping of name → object with ``origin``,
                    ``resolution``, ``crs``, ``width`` and ``height``.
            label: Name used in the error message.

        Raises:
            RasterError: On the first layer that deviates from the first.
        """
        items = list(layers.items())
        if not items:
            return
        ref_name, ref = items[0]
        for name, layer in items[1:]:
            mismatches = [
                attr
                for attr in ("origin", "resolution", "crs", "width", "height")
                if getattr(layer, attr) != getattr(ref, attr)
            ]
            if mismatches:
                raise RasterError(
                    f"Grid mismatch in {label}: '{name}' differs from "
                    f"'{ref_name}' in {', '.join(mismatches)}."
                )
