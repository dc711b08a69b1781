"""
PALM Prep — Tile Fetcher
=========================
HTTP download of source tiles with retries, backoff and an on-disk
cache keyed by tile name.

Only an exact ``200`` response counts as success.  Transport errors,
``429`` and ``5xx`` responses are retried with exponential backoff;
every other status fails immediately.

Usage::

    from palm_prep.fetcher import TileFetcher

    fetcher = TileFetcher(config.sources.lod2_base_url, config.http)
    paths = fetcher.fetch_many(keys, cache_dir=Path("cache/lod2"))
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

import requests

from palm_prep.config import HttpConfig
from shared.python.exceptions import (
    AcquisitionFailure,
    EmptyResultError,
    OutputWriteError,
    ValidationError,
)

logger = logging.getLogger("palm_prep.fetcher")

_RETRY_STATUSES = frozenset({429})


@dataclass
class FetchReport:
    """Outcome of a bulk download.

    Attributes:
        acquired: Cached file path per successfully fetched tile key,
                  in request order.
        failed: Failure per skipped tile key.
    """

    acquired: dict[str, Path] = field(default_factory=dict)
    failed: dict[str, AcquisitionFailure] = field(default_factory=dict)

    @property
    def paths(self) -> list[Path]:
        return list(self.acquired.values())


class TileFetcher:
    """Download tiles from a base URL.

    Args:
        base_url: Prefix the tile key is appended to.
        http: Timeout / retry policy.
        session: Optional pre-configured :class:`requests.Session`.

    Raises:
        ValidationError: If ``http.max_retries`` is below 1.
    """

    def __init__(
        self,
        base_url: str,
        http: HttpConfig | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url
        self.http = http or HttpConfig()
        if self.http.max_retries < 1:
            raise ValidationError(
                f"max_retries must be at least 1, got {self.http.max_retries}."
            )
        self._session = session or requests.Session()
        self._session.headers["User-Agent"] = self.http.user_agent

    def url_for(self, key: str) -> str:
        if self.base_url.endswith("/"):
            return f"{self.base_url}{key}"
        return f"{self.base_url}/{key}"

    # ------------------------------------------------------------------
    # Single tile
    # ------------------------------------------------------------------

    def fetch(self, key: str) -> bytes:
        """Download one tile and return its payload.

        Raises:
            AcquisitionFailure: On a non-200 response, or once all
                retries of a retryable failure are exhausted.
        """
        url = self.url_for(key)
        last_failure: AcquisitionFailure | None = None

        for attempt in range(1, self.http.max_retries + 1):
            try:
                response = self._session.get(url, timeout=self.http.timeout)
            except requests.RequestException as exc:
                last_failure = AcquisitionFailure(key, url, None, str(exc))
            else:
                if response.status_code == 200:
                    logger.debug("Downloaded %s (%d bytes)", key, len(response.content))
                    return response.content
                last_failure = AcquisitionFailure(key, url, response.status_code, response.reason or "")
                if not self._is_retryable(response.status_code):
                    raise last_failure

            logger.warning(
                "Download attempt %d/%d for %s failed: %s",
                attempt,
                self.http.max_retries,
                key,
                last_failure.message,
            )
            if attempt < self.http.max_retries:
                time.sleep(self.http.backoff_factor * 2 ** (attempt - 1))

        assert last_failure is not None
        raise last_failure

    def fetch_to_cache(self, key: str, cache_dir: Path) -> Path:
        """Download *key* into *cache_dir* unless it is already there.

        Returns:
            Path of the cached tile.

        Raises:
            AcquisitionFailure: If the download fails.
            OutputWriteError: If the tile cannot be written to the cache.
        """
        cache_dir = Path(cache_dir)
        target = cache_dir / key
        if target.exists() and target.stat().st_size > 0:
            logger.debug("Cache hit for %s", key)
            return target

        payload = self.fetch(key)
        tmp = target.with_name(target.name + ".part")
        try:
            cache_dir.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(payload)
            tmp.replace(target)
        except OSError as exc:
            raise OutputWriteError(str(target), str(exc)) from exc
        return target

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    def fetch_many(self, keys: list[str], cache_dir: Path) -> FetchReport:
        """Download every key in order, skipping individual failures.

        Raises:
            EmptyResultError: If not a single tile could be acquired.
        """
        report = FetchReport()
        for i, key in enumerate(keys, start=1):
            try:
                report.acquired[key] = self.fetch_to_cache(key, cache_dir)
                logger.info("[%d/%d] %s", i, len(keys), key)
            except AcquisitionFailure as exc:
                logger.warning("[%d/%d] Skipping %s: %s", i, len(keys), key, exc.message)
                report.failed[key] = exc

        if not report.acquired:
            raise EmptyResultError(
                f"None of the {len(keys)} requested tile(s) from {self.base_url} could be downloaded."
            )
        if report.failed:
            logger.warning(
                "%d of %d tile(s) skipped after download failures",
                len(report.failed),
                len(keys),
            )
        return report

    @staticmethod
    def _is_retryable(status_code: int) -> bool:
        return status_code in _RETRY_STATUSES or 500 <= status_code < 600
