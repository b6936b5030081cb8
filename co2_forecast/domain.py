"""Core data model: observations, datasets, forecasts and trend windows.

These are plain frozen dataclasses. They are built once and swapped whole;
nothing in the service mutates them after construction. The HTTP layer has
its own pydantic response models (see ``co2_forecast.api``).
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple

from co2_forecast.errors import ValidationError


class PointType(str, Enum):
    """Segment label for points in a trend window."""
    HISTORICAL = "Historical"
    PREDICTED = "Predicted"


@dataclass(frozen=True)
class ObservationPoint:
    """One daily reading: raw ``cycle`` value and seasonally-adjusted ``trend``."""
    date: dt.date
    cycle: float
    trend: float


@dataclass(frozen=True)
class Dataset:
    """Validated, date-ordered observations from one successful fetch."""
    points: Tuple[ObservationPoint, ...]
    fetched_at: dt.datetime
    source_version: str

    def __post_init__(self) -> None:
        if not self.points:
            raise ValidationError("Dataset must contain at least one observation")
        for prev, cur in zip(self.points, self.points[1:]):
            if not prev.date < cur.date:
                raise ValidationError(
                    f"Dataset dates must be strictly increasing: {prev.date} then {cur.date}"
                )

    @property
    def first_date(self) -> dt.date:
        return self.points[0].date

    @property
    def latest_date(self) -> dt.date:
        return self.points[-1].date

    @property
    def dates(self) -> Tuple[dt.date, ...]:
        return tuple(p.date for p in self.points)

    @property
    def trend_series(self) -> Tuple[float, ...]:
        return tuple(p.trend for p in self.points)

    @property
    def cycle_series(self) -> Tuple[float, ...]:
        return tuple(p.cycle for p in self.points)

    def __len__(self) -> int:
        return len(self.points)


@dataclass(frozen=True)
class ForecastResult:
    """
    Point forecasts and prediction intervals for ``horizon_days`` steps.

    Index ``i`` of every sequence is the forecast for
    ``origin_date + (i + 1)`` days.
    """
    origin_date: dt.date | None
    horizon_days: int
    mean: Tuple[float, ...]
    lower80: Tuple[float, ...]
    upper80: Tuple[float, ...]
    lower95: Tuple[float, ...]
    upper95: Tuple[float, ...]
    model_version: str | None = None

    def __post_init__(self) -> None:
        if self.horizon_days <= 0:
            raise ValueError("horizon_days must be positive")
        for name in ("mean", "lower80", "upper80", "lower95", "upper95"):
            if len(getattr(self, name)) != self.horizon_days:
                raise ValueError(f"{name} must have exactly {self.horizon_days} entries")

    def date_at(self, index: int) -> dt.date:
        """Calendar date for forecast step ``index`` (0-based)."""
        if self.origin_date is None:
            raise ValueError("ForecastResult has no origin date")
        return self.origin_date + dt.timedelta(days=index + 1)


@dataclass(frozen=True)
class HistoricalPoint:
    date: dt.date
    value: float
    type: PointType = PointType.HISTORICAL


@dataclass(frozen=True)
class PredictedPoint:
    date: dt.date
    value: float
    lower95: float
    upper95: float
    type: PointType = PointType.PREDICTED


@dataclass(frozen=True)
class TrendWindow:
    """Historical trend context joined to the forecast up to ``prediction_date``."""
    historical: Tuple[HistoricalPoint, ...]
    predicted: Tuple[PredictedPoint, ...]
    latest_data_date: dt.date
    prediction_date: dt.date
    predicted_value: float
    window_start: dt.date | None = None


@dataclass(frozen=True)
class PointPrediction:
    """Single-date prediction with the full per-day interval arrays."""
    prediction_date: dt.date
    latest_data_date: dt.date
    predicted_value: float
    forecast: ForecastResult

    @property
    def lower95(self) -> float:
        return self.forecast.lower95[-1]

    @property
    def upper95(self) -> float:
        return self.forecast.upper95[-1]


@dataclass(frozen=True)
class TableRow:
    date: dt.date
    predicted_value: float
    lower95: float | None = None
    upper95: float | None = None


@dataclass(frozen=True)
class TableFailure:
    date: dt.date
    error: str
    kind: str


@dataclass
class PredictionTable:
    """Best-effort table: ``rows`` hold successes, ``failures`` the omitted dates."""
    today: dt.date
    target: dt.date
    rows: list[TableRow] = field(default_factory=list)
    failures: list[TableFailure] = field(default_factory=list)
