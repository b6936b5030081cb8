"""Shared dataclasses and lightweight types used across modules."""

from dataclasses import dataclass
from datetime import datetime

from co2_forecast.domain import Dataset


@dataclass(frozen=True)
class CachedDataset:
    """Dataset snapshot with the wall-clock and monotonic time it was loaded."""
    data: Dataset
    fetched_at: datetime
    loaded_monotonic: float

    @property
    def source_version(self) -> str:
        return self.data.source_version
