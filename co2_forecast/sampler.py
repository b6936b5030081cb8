"""Non-uniform date grid for the prediction table: dense near term, sparse later."""

from __future__ import annotations

import calendar
import datetime as dt
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

from co2_forecast.domain import PointPrediction, PredictionTable, TableFailure, TableRow
from co2_forecast.errors import Co2ForecastError, InputError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="sampler")

Predictor = Callable[[dt.date], PointPrediction]


def add_months(day: dt.date, months: int) -> dt.date:
    """Shift by calendar months, clipping the day to the target month's length."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return dt.date(year, month, min(day.day, last_day))


class AdaptiveSampler:
    """
    Dates between ``today`` and a target: daily for the first 30 days, weekly
    through day 180, then monthly.
    """

    def __init__(
        self,
        *,
        daily_days: int = 30,
        weekly_until_days: int = 180,
        weekly_step_days: int = 7,
        parallelism: int = 1,
    ) -> None:
        self.daily_days = daily_days
        self.weekly_until_days = weekly_until_days
        self.weekly_step_days = weekly_step_days
        self.parallelism = max(1, parallelism)

    def sample_dates(self, today: dt.date, target: dt.date) -> List[dt.date]:
        """Ascending, de-duplicated grid that always contains ``today`` and ``target``."""
        if target < today:
            raise InputError(
                f"Target date {target.isoformat()} is before today ({today.isoformat()})"
            )
        grid = set()

        daily_end = min(target, today + dt.timedelta(days=self.daily_days))
        day = today
        while day <= daily_end:
            grid.add(day)
            day += dt.timedelta(days=1)

        weekly_end = min(target, today + dt.timedelta(days=self.weekly_until_days))
        day = today + dt.timedelta(days=self.daily_days + 1)
        while day <= weekly_end:
            grid.add(day)
            day += dt.timedelta(days=self.weekly_step_days)

        anchor = today + dt.timedelta(days=self.weekly_until_days + 1)
        step = 0
        day = anchor
        while day <= target:
            grid.add(day)
            step += 1
            day = add_months(anchor, step)

        grid.add(target)
        return sorted(grid)

    def build_table(
        self,
        today: dt.date,
        target: dt.date,
        predict: Predictor,
    ) -> PredictionTable:
        """
        Run ``predict`` for every sampled date.

        A failing date is recorded in ``failures`` and left out of ``rows``;
        the other dates still run.
        """
        dates = self.sample_dates(today, target)
        table = PredictionTable(today=today, target=target)

        def run(day: dt.date) -> tuple[dt.date, Optional[PointPrediction], Optional[Exception]]:
            try:
                return day, predict(day), None
            except Co2ForecastError as exc:
                return day, None, exc
            except Exception as exc:  # noqa: BLE001
                logger.exception("Unexpected error predicting %s", day.isoformat())
                return day, None, exc

        # the target has the longest horizon; running it first lets the
        # remaining dates reuse its forecast
        last = run(dates[-1])
        rest = dates[:-1]
        if self.parallelism > 1 and len(rest) > 1:
            with ThreadPoolExecutor(max_workers=self.parallelism) as pool:
                outcomes = list(pool.map(run, rest))
        else:
            outcomes = [run(day) for day in rest]
        outcomes.append(last)

        for day, prediction, error in outcomes:
            if error is not None:
                table.failures.append(
                    TableFailure(date=day, error=str(error), kind=type(error).__name__)
                )
                continue
            table.rows.append(
                TableRow(
                    date=day,
                    predicted_value=prediction.predicted_value,
                    lower95=prediction.lower95,
                    upper95=prediction.upper95,
                )
            )

        logger.info(
            "Built prediction table",
            extra={
                "dates": len(dates),
                "rows": len(table.rows),
                "failures": len(table.failures),
                "target": target.isoformat(),
            },
        )
        return table
