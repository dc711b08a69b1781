"""
PALM Prep — Shared Base Tool
=============================
Abstract base for runnable PALM Prep entry points.

``run()`` fixes the order validate → process → report; subclasses
supply :meth:`GeoTool.validate_inputs` and :meth:`GeoTool.process`.
Long-running work inside ``process`` is wrapped in :meth:`GeoTool.stage`
blocks so each step is logged and timed::

    from shared.python.base_tool import GeoTool

    class TileDownload(GeoTool):
        def validate_inputs(self) -> None:
            ...

        def process(self) -> None:
            with self.stage("download"):
                ...
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

# Root of the palm_prep.<module> logger tree.
logger = logging.getLogger("palm_prep")

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s — %(message)s"


class GeoTool(ABC):
    """Validate-then-process runner with per-stage timing.

    Attributes:
        input_path: Primary input, e.g. the pipeline's JSON config.
        output_path: Directory receiving the results.
        verbose: Log at DEBUG instead of INFO.
        timings: Seconds spent per completed :meth:`stage`, in the
            order the stages ran.
    """

    def __init__(
        self,
        input_path: Path,
        output_path: Path,
        *,
        verbose: bool = False,
    ) -> None:
        self.input_path: Path = Path(input_path)
        self.output_path: Path = Path(output_path)
        self.verbose: bool = verbose
        self.timings: dict[str, float] = {}

        self._configure_logging()

    @abstractmethod
    def validate_inputs(self) -> None:
        """Check every precondition; raise a ``ValidationError`` subclass
        on the first one that fails."""

    @abstractmethod
    def process(self) -> None:
        """Do the work.  Only called after :meth:`validate_inputs`."""

    def run(self) -> None:
        """Validate, process, then log a timing summary.

        Exceptions from either step propagate unchanged; no summary is
        logged in that case.
        """
        name = self.__class__.__name__
        logger.info("Starting %s", name)
        self.timings.clear()
        start = time.perf_counter()

        with self.stage("validate"):
            self.validate_inputs()
        self.process()

        self._report_success(time.perf_counter() - start)

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        """Time and log one named step.

        The duration is recorded in :attr:`timings` only when the block
        finishes without raising.
        """
        logger.info("▶ %s", name)
        start = time.perf_counter()
        yield
        elapsed = time.perf_counter() - start
        self.timings[name] = elapsed
        logger.debug("%s finished in %.2fs", name, elapsed)

    def _report_success(self, elapsed: float) -> None:
        breakdown = ", ".join(f"{k}={v:.1f}s" for k, v in self.timings.items())
        logger.info(
            "%s completed in %.2fs → %s (%s)",
            self.__class__.__name__,
            elapsed,
            self.output_path,
            breakdown or "no stages",
        )

    def _configure_logging(self) -> None:
        """Attach one stream handler to the ``palm_prep`` logger.

        Repeated instances reuse the existing handler; only the level is
        updated.
        """
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%H:%M:%S"))
            logger.addHandler(handler)

        logger.setLevel(logging.DEBUG if self.verbose else logging.INFO)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"input_path={self.input_path!r}, "
            f"output_path={self.output_path!r})"
        )
