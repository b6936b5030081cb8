"""Join the historical trend window and the forecast into one series."""

from __future__ import annotations

import bisect
import datetime as dt
from typing import List

from co2_forecast.domain import (
    Dataset,
    ForecastResult,
    HistoricalPoint,
    PointPrediction,
    PredictedPoint,
    TrendWindow,
)
from co2_forecast.errors import DateRangeError
from co2_forecast.forecast_engine import ForecastEngine
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="trend_assembler")


def years_before(day: dt.date, years: int) -> dt.date:
    """Same calendar day ``years`` earlier; Feb 29 falls back to Feb 28."""
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        return day.replace(year=day.year - years, day=28)


def horizon_days(latest: dt.date, prediction_date: dt.date) -> int:
    """Days from the latest observation to ``prediction_date``; must be positive."""
    days = (prediction_date - latest).days
    if days <= 0:
        raise DateRangeError(
            f"Prediction date must be after the latest available data point: {latest.isoformat()}",
            latest_data_date=latest,
        )
    return days


class TrendAssembler:
    """Builds single-date predictions and historical + predicted trend windows."""

    def __init__(self, engine: ForecastEngine, *, history_years: int = 10) -> None:
        self.engine = engine
        self.history_years = history_years

    def _forecast(self, dataset: Dataset, prediction_date: dt.date) -> tuple[int, ForecastResult]:
        h = horizon_days(dataset.latest_date, prediction_date)
        result = self.engine.forecast_dataset(dataset, h)
        return h, result

    def predict_point(self, dataset: Dataset, prediction_date: dt.date) -> PointPrediction:
        """Predicted value for one date, with the per-day intervals up to it."""
        h, result = self._forecast(dataset, prediction_date)
        return PointPrediction(
            prediction_date=prediction_date,
            latest_data_date=dataset.latest_date,
            predicted_value=result.mean[h - 1],
            forecast=result,
        )

    def historical_window(self, dataset: Dataset, prediction_date: dt.date) -> List[HistoricalPoint]:
        """Observations in ``[prediction_date - history_years, latest]``, clipped to the data."""
        start = years_before(prediction_date, self.history_years)
        dates = dataset.dates
        lo = bisect.bisect_left(dates, start)
        return [HistoricalPoint(date=p.date, value=p.trend) for p in dataset.points[lo:]]

    def assemble(self, dataset: Dataset, prediction_date: dt.date) -> TrendWindow:
        """
        Forecast up to ``prediction_date`` and attach the historical context.

        ``predicted`` holds one point per day in ``(latest, prediction_date]``;
        day ``d`` after the latest observation takes forecast step ``d - 1``.
        """
        latest = dataset.latest_date
        h, result = self._forecast(dataset, prediction_date)

        historical = self.historical_window(dataset, prediction_date)
        predicted = [
            PredictedPoint(
                date=result.date_at(i),
                value=result.mean[i],
                lower95=result.lower95[i],
                upper95=result.upper95[i],
            )
            for i in range(h)
        ]
        logger.debug(
            "Assembled trend window",
            extra={
                "historical_points": len(historical),
                "predicted_points": len(predicted),
                "latest_data_date": latest.isoformat(),
                "prediction_date": prediction_date.isoformat(),
            },
        )
        return TrendWindow(
            historical=tuple(historical),
            predicted=tuple(predicted),
            latest_data_date=latest,
            prediction_date=prediction_date,
            predicted_value=result.mean[h - 1],
            window_start=years_before(prediction_date, self.history_years),
        )
