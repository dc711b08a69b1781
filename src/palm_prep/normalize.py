"""
PALM Prep — Geometry Normalizer
================================
Recovers usable (multi)polygons from malformed or exotic building
geometry, e.g. LOD2 solids that arrive as ``PolyhedralSurface`` or
``TIN``.

The chain is a small state machine::

    RAW → DIM_REDUCED → TYPE_CHECK → DIRECT_CAST
                                   → PER_FEATURE_REPAIR
                                   → EXTERNAL_CONVERSION → NORMALIZED
                                                         → FAILED

1. Strip Z/M coordinates.
2. Inspect the distinct geometry types.
3. All polygonal → coerce to MultiPolygon, done.
4. Otherwise attempt a strict bulk cast of every feature.
5. Otherwise repair feature by feature, each yielding a tagged
   :class:`Repaired` or :class:`Unrepaired` result.
6. Anything still unrepaired → hand the whole set to ``ogr2ogr``.
7. If that fails too → :class:`~shared.python.exceptions.GeometryRepairFailed`.

Usage::

    from palm_prep.normalize import GeometryNormalizer

    normalizer = GeometryNormalizer()
    gdf = normalizer.normalize(raw_features)
    print(normalizer.states)
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Sequence, Union

import geopandas as gpd
import pandas as pd
import shapely
from pyproj import CRS
from shapely.errors import GEOSException, GeometryTypeError
from shapely.geometry import MultiPolygon, Polygon, shape
from shapely.geometry.base import BaseGeometry
from shapely.ops import polygonize

from palm_prep.mosaic import RawFeatureSet
from shared.python.exceptions import CRSError, GeometryRepairFailed

logger = logging.getLogger("palm_prep.normalize")

POLYGONAL = frozenset({"Polygon", "MultiPolygon"})
SURFACE_TYPES = frozenset({"POLYHEDRALSURFACE", "TIN"})
REMEDIATION_COMMAND = "ogr2ogr -f GPKG lod2_multipolygon.gpkg lod2.gpkg -nlt MULTIPOLYGON"

_CAST_ERRORS = (GeometryTypeError, GEOSException, ValueError, TypeError)


class NormalizationState(str, Enum):
    RAW = "RAW"
    DIM_REDUCED = "DIM_REDUCED"
    TYPE_CHECK = "TYPE_CHECK"
    DIRECT_CAST = "DIRECT_CAST"
    PER_FEATURE_REPAIR = "PER_FEATURE_REPAIR"
    EXTERNAL_CONVERSION = "EXTERNAL_CONVERSION"
    FAILED = "FAILED"
    NORMALIZED = "NORMALIZED"


@dataclass(frozen=True)
class Repaired:
    geometry: MultiPolygon


@dataclass(frozen=True)
class Unrepaired:
    original: Any
    reason: str


RepairResult = Union[Repaired, Unrepaired]


# ---------------------------------------------------------------------------
# Geometry helpers
# ---------------------------------------------------------------------------


def geometry_type(geom: Any) -> str:
    """Type tag of a shapely geometry or a GeoJSON-like mapping."""
    if isinstance(geom, BaseGeometry):
        return geom.geom_type
    return str(geom.get("type", "Unknown"))


def _truncate(coords: Any) -> Any:
    if not coords:
        return coords
    if isinstance(coords[0], (int, float)):
        return tuple(coords[:2])
    return [_truncate(c) for c in coords]


def drop_z(geom: Any) -> Any:
    """Reduce a geometry to 2-D."""
    if isinstance(geom, BaseGeometry):
        return shapely.force_2d(geom)
    out = dict(geom)
    if "coordinates" in out:
        out["coordinates"] = _truncate(out["coordinates"])
    if "geometries" in out:
        out["geometries"] = [drop_z(g) for g in out["geometries"]]
    return out


def _flatten(geom: BaseGeometry) -> Iterator[BaseGeometry]:
    if hasattr(geom, "geoms"):
        for part in geom.geoms:
            yield from _flatten(part)
    else:
        yield geom


def to_multipolygon(geom: BaseGeometry) -> MultiPolygon:
    """Coerce a Polygon or MultiPolygon to MultiPolygon."""
    if isinstance(geom, MultiPolygon):
        return geom
    if isinstance(geom, Polygon):
        return MultiPolygon([geom]) if not geom.is_empty else MultiPolygon()
    raise GeometryTypeError(f"Cannot coerce {geom.geom_type} to MultiPolygon")


def strict_cast(geom: Any) -> MultiPolygon:
    """Cast to MultiPolygon without discarding anything.

    Only polygonal geometries and collections made purely of polygons
    can be cast.

    Raises:
        GeometryTypeError: For anything else.
    """
    if not isinstance(geom, BaseGeometry):
        raise GeometryTypeError(f"Cannot cast {geometry_type(geom)} to MultiPolygon")
    if geom.geom_type in POLYGONAL:
        return to_multipolygon(geom)
    parts = list(_flatten(geom))
    if geom.geom_type == "GeometryCollection" and all(p.geom_type == "Polygon" for p in parts):
        return MultiPolygon([p for p in parts if not p.is_empty])
    raise GeometryTypeError(f"Cannot cast {geom.geom_type} to MultiPolygon")


def tolerant_cast(geom: BaseGeometry) -> MultiPolygon:
    """Cast to MultiPolygon keeping whatever polygonal content exists.

    Polygon members of collections are kept and other members dropped.
    Closed linework is polygonized.

    Raises:
        GeometryTypeError: If no polygonal content can be recovered.
    """
    if geom.geom_type in POLYGONAL:
        return to_multipolygon(geom)
    polys = [p for p in _flatten(geom) if isinstance(p, Polygon) and not p.is_empty]
    if not polys and geom.geom_type in ("LineString", "LinearRing", "MultiLineString"):
        polys = [p for p in polygonize(geom) if p.area > 0]
    if not polys:
        raise GeometryTypeError(f"No polygonal content in {geom.geom_type}")
    return MultiPolygon(polys)


def make_valid_multipolygon(geom: BaseGeometry) -> MultiPolygon:
    """Return a valid MultiPolygon covering the polygonal area of *geom*.

    Each part goes through :func:`shapely.make_valid` on its own and the
    polygonal pieces are dissolved, so overlapping ground and roof faces
    merge into one footprint and flattened walls drop out.  An empty
    MultiPolygon means nothing polygonal survived.
    """
    if geom is None or geom.is_empty:
        return MultiPolygon()
    if geom.is_valid:
        return to_multipolygon(geom)

    pieces: list[Polygon] = []
    for part in _flatten(geom):
        fixed = shapely.make_valid(part)
        pieces.extend(p for p in _flatten(fixed) if isinstance(p, Polygon) and not p.is_empty)
    if not pieces:
        return MultiPolygon()
    merged = shapely.union_all(pieces)
    return MultiPolygon([p for p in _flatten(merged) if isinstance(p, Polygon) and not p.is_empty])


def _surface_faces(geo: dict) -> list[Polygon]:
    faces: list[Polygon] = []
    for face in geo.get("coordinates") or []:
        if not face:
            continue
        try:
            poly = Polygon(face[0], face[1:])
        except _CAST_ERRORS:
            continue
        # vertical walls collapse to zero area once Z is gone
        if not poly.is_empty and poly.area > 0:
            faces.append(poly)
    return faces


def _sub_polygons(geo: dict) -> list[Polygon]:
    parts: list[Polygon] = []
    for member in geo.get("geometries") or []:
        if isinstance(member, dict) and str(member.get("type", "")).upper() in SURFACE_TYPES:
            parts.extend(_surface_faces(member))
            continue
        try:
            sub = member if isinstance(member, BaseGeometry) else shape(member)
        except _CAST_ERRORS:
            continue
        parts.extend(p for p in _flatten(sub) if isinstance(p, Polygon) and not p.is_empty)
    return parts


def _merge_parts(parts: Sequence[Polygon]) -> MultiPolygon:
    try:
        merged = shapely.union_all(list(parts))
    except GEOSException as exc:
        logger.debug("Union of %d face(s) failed (%s); combining without dissolve", len(parts), exc)
        merged = MultiPolygon(list(parts))
    return tolerant_cast(merged)


def repair_feature(geom: Any) -> RepairResult:
    """Try to turn a single geometry into a MultiPolygon.

    Surfaces (``PolyhedralSurface`` / ``TIN``) are rebuilt from their
    faces, or from polygonal members when no face can be built.  Every
    other geometry goes through :func:`tolerant_cast`.
    """
    gtype = geometry_type(geom)

    if not isinstance(geom, BaseGeometry):
        if gtype.upper() in SURFACE_TYPES:
            parts = _surface_faces(geom) or _sub_polygons(geom)
            if not parts:
                return Unrepaired(geom, f"no polygonal faces in {gtype}")
            try:
                return Repaired(_merge_parts(parts))
            except _CAST_ERRORS as exc:
                return Unrepaired(geom, str(exc))
        try:
            geom = shape(geom)
        except _CAST_ERRORS:
            return Unrepaired(geom, f"unsupported geometry type {gtype}")

    try:
        return Repaired(tolerant_cast(geom))
    except _CAST_ERRORS as exc:
        return Unrepaired(geom, str(exc))


# ---------------------------------------------------------------------------
# WKT for the interchange file
# ---------------------------------------------------------------------------


def _ring_wkt(ring: Sequence[Sequence[float]]) -> str:
    return "(" + ", ".join(f"{float(pt[0])!r} {float(pt[1])!r}" for pt in ring) + ")"


def _polygon_wkt(rings: Sequence[Any]) -> str:
    return "(" + ", ".join(_ring_wkt(r) for r in rings) + ")"


def to_wkt(geom: Any) -> str:
    """WKT for shapely geometries and surface mappings.

    Returns an empty string when the geometry cannot be expressed.
    """
    if isinstance(geom, BaseGeometry):
        return geom.wkt
    gtype = geometry_type(geom).upper()
    if gtype in SURFACE_TYPES:
        faces = [f for f in geom.get("coordinates") or [] if f]
        if not faces:
            return f"{gtype} EMPTY"
        return f"{gtype} (" + ", ".join(_polygon_wkt(f) for f in faces) + ")"
    try:
        return shape(geom).wkt
    except _CAST_ERRORS:
        return ""


# ---------------------------------------------------------------------------
# External conversion
# ---------------------------------------------------------------------------


class ExternalConverter:
    """Last-resort conversion through ``ogr2ogr -nlt MULTIPOLYGON``.

    The feature set is written to a CSV file with a ``wkt`` column, run
    through ``ogr2ogr`` into a GeoPackage and read back with geopandas.

    Args:
        executable: Name or path of the ``ogr2ogr`` binary.
        timeout: Seconds before the subprocess is abandoned.
    """

    def __init__(self, executable: str = "ogr2ogr", timeout: float = 600.0) -> None:
        self.executable = executable
        self.timeout = timeout

    @staticmethod
    def command(executable: str, src: Path, dst: Path, crs: CRS) -> list[str]:
        return [
            executable,
            "-f", "GPKG",
            str(dst),
            str(src),
            "-oo", "GEOM_POSSIBLE_NAMES=wkt",
            "-oo", "KEEP_GEOM_COLUMNS=NO",
            "-nlt", "MULTIPOLYGON",
            "-a_srs", crs.to_wkt(),
            "-overwrite",
        ]

    def convert(self, geometries: Sequence[Any], crs: CRS, pending: Sequence[int]) -> list[MultiPolygon]:
        """Convert every geometry, returning them in input order.

        Args:
            geometries: The whole feature set.
            crs: CRS assigned to the converted layer.
            pending: Indices still unrepaired, reported if conversion
                     cannot run at all.

        Raises:
            GeometryRepairFailed: If ``ogr2ogr`` is missing or fails, or
                any reloaded geometry is not polygonal.
        """
        exe = shutil.which(self.executable)
        if exe is None:
            logger.warning("'%s' not found on PATH; external conversion unavailable", self.executable)
            raise GeometryRepairFailed(pending, REMEDIATION_COMMAND)

        with tempfile.TemporaryDirectory(prefix="palm_prep_") as tmp:
            src = Path(tmp) / "features.csv"
            dst = Path(tmp) / "features.gpkg"
            pd.DataFrame(
                {"src_index": range(len(geometries)), "wkt": [to_wkt(g) for g in geometries]}
            ).to_csv(src, index=False)

            cmd = self.command(exe, src, dst, crs)
            logger.info("Running external conversion: %s", " ".join(cmd[:8]) + " ...")
            try:
                proc = subprocess.run(
                    cmd, capture_output=True, text=True, timeout=self.timeout, check=False
                )
            except (OSError, subprocess.TimeoutExpired) as exc:
                logger.warning("External conversion could not run: %s", exc)
                raise GeometryRepairFailed(pending, REMEDIATION_COMMAND) from exc

            if proc.returncode != 0 or not dst.exists():
                logger.warning(
                    "ogr2ogr exited with %d: %s", proc.returncode, (proc.stderr or "").strip()
                )
                raise GeometryRepairFailed(pending, REMEDIATION_COMMAND)

            try:
                converted = gpd.read_file(dst)
            except Exception as exc:
                raise GeometryRepairFailed(pending, REMEDIATION_COMMAND) from exc

        result: list[Any] = [None] * len(geometries)
        for idx, geom in zip(converted["src_index"].astype(int), converted.geometry):
            if 0 <= idx < len(result):
                result[idx] = geom

        coerced: list[MultiPolygon | None] = []
        for geom in result:
            if geom is None or geom.is_empty:
                coerced.append(None)
                continue
            # a MultiSurface reloads as a collection of its linearized polygons
            try:
                coerced.append(strict_cast(geom))
            except _CAST_ERRORS:
                coerced.append(None)

        bad = [i for i, g in enumerate(coerced) if g is None or g.is_empty]
        if bad:
            raise GeometryRepairFailed(bad, REMEDIATION_COMMAND)
        return coerced  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class GeometryNormalizer:
    """Drive a :class:`~palm_prep.mosaic.RawFeatureSet` to MultiPolygons.

    Args:
        converter: External converter used as the last resort.
        external: Set to ``False`` to skip external conversion and fail
                  straight after per-feature repair.

    Attributes:
        states: States visited by the most recent :meth:`normalize` call.
        unrepaired: Indices left unrepaired by per-feature repair in the
                    most recent call.
    """

    def __init__(
        self,
        converter: ExternalConverter | None = None,
        *,
        external: bool = True,
    ) -> None:
        self.converter = (converter or ExternalConverter()) if external else None
        self.states: list[NormalizationState] = []
        self.unrepaired: list[int] = []

    def _enter(self, state: NormalizationState) -> None:
        self.states.append(state)
        logger.debug("Normalizer → %s", state.value)

    def normalize(self, features: RawFeatureSet) -> gpd.GeoDataFrame:
        """Return the features as a GeoDataFrame of MultiPolygons.

        Raises:
            CRSError: If the feature set has no CRS.
            GeometryRepairFailed: If every repair strategy failed.
        """
        if features.crs is None:
            raise CRSError(None)

        self.states = []
        self.unrepaired = []
        self._enter(NormalizationState.RAW)

        geoms = [drop_z(g) for g in features.geometries]
        self._enter(NormalizationState.DIM_REDUCED)

        types = sorted({geometry_type(g) for g in geoms})
        self._enter(NormalizationState.TYPE_CHECK)
        logger.info("Normalizing %d feature(s); geometry types: %s", len(geoms), ", ".join(types))

        if set(types) <= POLYGONAL:
            out = [to_multipolygon(g) for g in geoms]
        else:
            out = self._cast_or_repair(geoms, features.crs)

        invalid = sum(1 for g in out if not g.is_valid)
        if invalid:
            logger.info("%d invalid geometries made valid", invalid)
            out = [make_valid_multipolygon(g) for g in out]

        self._enter(NormalizationState.NORMALIZED)
        return gpd.GeoDataFrame(
            features.attributes.reset_index(drop=True),
            geometry=out,
            crs=features.crs,
        )

    def _cast_or_repair(self, geoms: list[Any], crs: CRS) -> list[MultiPolygon]:
        self._enter(NormalizationState.DIRECT_CAST)
        try:
            return [strict_cast(g) for g in geoms]
        except _CAST_ERRORS as exc:
            logger.warning("Bulk cast to MultiPolygon failed (%s); repairing per feature", exc)

        self._enter(NormalizationState.PER_FEATURE_REPAIR)
        results = [repair_feature(g) for g in geoms]
        self.unrepaired = [i for i, r in enumerate(results) if isinstance(r, Unrepaired)]

        if not self.unrepaired:
            logger.info("Per-feature repair recovered all %d feature(s)", len(results))
            return [r.geometry for r in results]  # type: ignore[union-attr]

        for i in self.unrepaired[:10]:
            logger.debug("Feature %d unrepaired: %s", i, results[i].reason)  # type: ignore[union-attr]
        logger.warning(
            "%d feature(s) could not be repaired in place; trying external conversion",
            len(self.unrepaired),
        )

        self._enter(NormalizationState.EXTERNAL_CONVERSION)
        current = [r.geometry if isinstance(r, Repaired) else r.original for r in results]
        try:
            if self.converter is None:
                raise GeometryRepairFailed(self.unrepaired, REMEDIATION_COMMAND)
            return self.converter.convert(current, crs, self.unrepaired)
        except GeometryRepairFailed:
            self._enter(NormalizationState.FAILED)
            raise
