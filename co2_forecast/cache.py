"""TTL cache for the historical CO2 dataset with single-flight refresh."""

from __future__ import annotations

import hashlib
import json
import threading
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from co2_forecast.app_types import CachedDataset
from co2_forecast.data_sources import Co2DataSource, parse_co2_payload
from co2_forecast.domain import Dataset, ObservationPoint
from co2_forecast.errors import Co2ForecastError, StaleDataError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="cache")

DatasetListener = Callable[[Dataset], None]


def compute_source_version(points: Sequence[ObservationPoint]) -> str:
    """Content hash of the validated observations; equal data gives equal versions."""
    canonical = json.dumps(
        [[p.date.isoformat(), p.cycle, p.trend] for p in points],
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


class DataCache:
    """
    Holds the current Dataset and refreshes it when older than the TTL.

    Reads take the current snapshot reference without locking. Refreshes run
    under a single lock, so concurrent callers that find the data expired
    block on the in-flight refresh and then reuse its result instead of
    issuing their own fetch.

    When a refresh fails and a previous dataset exists, that dataset is
    served (and stays current) as long as its age is within
    ``ttl + max_stale_seconds``; ``max_stale_seconds=None`` removes the bound.
    After a failure, further fetch attempts are skipped for
    ``refresh_backoff_seconds`` while stale data is being served.
    """

    def __init__(
        self,
        data_source: Co2DataSource,
        *,
        ttl_seconds: int = 24 * 60 * 60,
        max_stale_seconds: int | None = None,
        refresh_backoff_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        parser: Callable[[object], List[ObservationPoint]] = parse_co2_payload,
    ) -> None:
        logger.debug("Initializing DataCache", extra={"ttl_seconds": ttl_seconds})
        self._source = data_source
        self.ttl = ttl_seconds
        self.max_stale = max_stale_seconds
        self.refresh_backoff = refresh_backoff_seconds
        self._clock = clock
        self._now = now
        self._parser = parser
        self._current: Optional[CachedDataset] = None
        self._refresh_lock = threading.Lock()
        self._last_failure_at: Optional[float] = None
        self._listeners: list[DatasetListener] = []
        self.fetch_count = 0

    def subscribe(self, listener: DatasetListener) -> None:
        """Call ``listener(new_dataset)`` after every successful swap."""
        self._listeners.append(listener)

    def snapshot(self) -> Optional[CachedDataset]:
        """Current cached entry, or None if nothing has been loaded yet. Never fetches."""
        return self._current

    def age_seconds(self, entry: Optional[CachedDataset] = None) -> Optional[float]:
        entry = entry or self._current
        if entry is None:
            return None
        return self._clock() - entry.loaded_monotonic

    def _is_fresh(self, entry: Optional[CachedDataset]) -> bool:
        """Return True if the entry is younger than the TTL."""
        if entry is None:
            return False
        return self.age_seconds(entry) < self.ttl

    def _within_stale_bound(self, entry: CachedDataset) -> bool:
        """Return True if an expired entry may still be served."""
        if self.max_stale is None:
            return True
        return self.age_seconds(entry) < self.ttl + self.max_stale

    def _in_backoff(self) -> bool:
        if self._last_failure_at is None:
            return False
        return self._clock() - self._last_failure_at < self.refresh_backoff

    def get_dataset(self, *, allow_stale: bool = True) -> Dataset:
        """
        Return the cached Dataset, refreshing it first when the TTL has passed.

        With ``allow_stale=False`` a failed refresh always raises, even if an
        older dataset is available.
        """
        entry = self._current
        if self._is_fresh(entry):
            return entry.data
        return self._refresh_expired(entry, allow_stale=allow_stale).data

    def _refresh_expired(self, seen: Optional[CachedDataset], *, allow_stale: bool) -> CachedDataset:
        with self._refresh_lock:
            current = self._current
            if current is not seen and self._is_fresh(current):
                logger.debug("Dataset refreshed by a concurrent caller")
                return current

            if current is not None and allow_stale and self._in_backoff() and self._within_stale_bound(current):
                logger.debug("Skipping refresh during failure backoff; serving stale dataset")
                return current

            try:
                return self._do_refresh()
            except Co2ForecastError as exc:
                if current is None:
                    logger.error("Dataset refresh failed with no cached data: %s", exc)
                    raise
                if not allow_stale:
                    raise
                if not self._within_stale_bound(current):
                    logger.error(
                        "Dataset refresh failed and cached data exceeds stale bound",
                        extra={"age_seconds": self.age_seconds(current), "max_stale_seconds": self.max_stale},
                    )
                    raise StaleDataError(
                        f"Refresh failed and cached data is too old to serve: {exc}"
                    ) from exc
                logger.warning(
                    "Dataset refresh failed; serving stale dataset",
                    extra={
                        "error": str(exc),
                        "source_version": current.source_version,
                        "age_seconds": round(self.age_seconds(current), 1),
                    },
                )
                return current

    def refresh(self) -> Dataset:
        """Force a fetch now. Errors propagate; the previous dataset stays current."""
        with self._refresh_lock:
            return self._do_refresh().data

    def _do_refresh(self) -> CachedDataset:
        """Fetch, validate, build and swap in a new Dataset. Caller holds the lock."""
        self.fetch_count += 1
        try:
            payload = self._source.fetch_payload()
            points = self._parser(payload)
            dataset = Dataset(
                points=tuple(points),
                fetched_at=self._now(),
                source_version=compute_source_version(points),
            )
        except Co2ForecastError:
            self._last_failure_at = self._clock()
            raise

        previous = self._current
        entry = CachedDataset(data=dataset, fetched_at=dataset.fetched_at, loaded_monotonic=self._clock())
        self._current = entry
        self._last_failure_at = None
        logger.info(
            "Dataset refreshed",
            extra={
                "points": len(dataset),
                "first_date": dataset.first_date.isoformat(),
                "latest_date": dataset.latest_date.isoformat(),
                "source_version": dataset.source_version,
                "previous_version": previous.source_version if previous else None,
            },
        )
        for listener in self._listeners:
            listener(dataset)
        return entry

