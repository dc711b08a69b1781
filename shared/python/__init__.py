"""
PALM Prep — Shared Python Package
==================================
Re-exports the shared base class, exception hierarchy, and validator
utilities so pipeline modules can import from a single location::

    from shared.python import GeoTool, Validators
    from shared.python.exceptions import CRSError
"""

from shared.python.base_tool import GeoTool
from shared.python.exceptions import (
    AcquisitionFailure,
    ColumnNotFoundError,
    CRSError,
    EmptyResultError,
    GeometryRepairFailed,
    NoIntersectingTiles,
    OutputWriteError,
    PalmPrepError,
    RasterError,
    ValidationError,
)
from shared.python.validators import Validators

__all__ = [
    "GeoTool",
    "Validators",
    "PalmPrepError",
    "ValidationError",
    "ColumnNotFoundError",
    "CRSError",
    "AcquisitionFailure",
    "GeometryRepairFailed",
    "EmptyResultError",
    "NoIntersectingTiles",
    "RasterError",
    "OutputWriteError",
]
