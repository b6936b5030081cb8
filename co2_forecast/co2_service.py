"""Facade over cache, model and assemblers used by the HTTP layer."""
from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from co2_forecast import config
from co2_forecast.cache import DataCache
from co2_forecast.data_sources import build_data_source
from co2_forecast.domain import Dataset, PointPrediction, PredictionTable, TrendWindow
from co2_forecast.errors import InputError
from co2_forecast.forecast_engine import FittedModel, ForecastEngine
from co2_forecast.sampler import AdaptiveSampler
from co2_forecast.trend_assembler import TrendAssembler
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="co2_service")

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_iso_date(value: object, *, field: str = "date") -> dt.date:
    """Parse a strict ``YYYY-MM-DD`` string or raise InputError."""
    if isinstance(value, dt.date) and not isinstance(value, dt.datetime):
        return value
    if not isinstance(value, str) or not _ISO_DATE.match(value.strip()):
        raise InputError(f"Invalid {field} {value!r}. Use YYYY-MM-DD")
    try:
        return dt.date.fromisoformat(value.strip())
    except ValueError as exc:
        raise InputError(f"Invalid {field} {value!r}. Use YYYY-MM-DD") from exc


@dataclass
class Co2ForecastService:
    """Entry points for current data, predictions, trend windows and tables."""
    cache: DataCache
    engine: ForecastEngine
    assembler: TrendAssembler
    sampler: AdaptiveSampler
    today: Callable[[], dt.date] = dt.date.today

    def get_current(self) -> Dataset:
        """Current dataset snapshot (refreshed if the TTL has passed)."""
        return self.cache.get_dataset()

    def get_raw_series(self, end_date: Optional[str] = None) -> List[Dict[str, object]]:
        """Long-format rows (date, type, value) for both cycle and trend readings."""
        dataset = self.get_current()
        limit = parse_iso_date(end_date, field="end_date") if end_date else None
        rows: List[Dict[str, object]] = []
        for point in dataset.points:
            if limit is not None and point.date > limit:
                break
            rows.append({"date": point.date, "type": "cycle", "value": point.cycle})
            rows.append({"date": point.date, "type": "trend", "value": point.trend})
        return rows

    def predict(self, prediction_date: str) -> PointPrediction:
        """Predicted trend value for one date, all-or-nothing."""
        target = parse_iso_date(prediction_date, field="prediction_date")
        dataset = self.get_current()
        logger.info("Generating prediction", extra={"prediction_date": target.isoformat()})
        return self.assembler.predict_point(dataset, target)

    def trend(self, prediction_date: str) -> TrendWindow:
        """Historical window plus daily forecast up to ``prediction_date``."""
        target = parse_iso_date(prediction_date, field="prediction_date")
        dataset = self.get_current()
        logger.info("Generating trend window", extra={"prediction_date": target.isoformat()})
        return self.assembler.assemble(dataset, target)

    def prediction_table(self, target_date: str, today: Optional[str] = None) -> PredictionTable:
        """Best-effort predictions on the adaptive date grid from today to ``target_date``."""
        target = parse_iso_date(target_date, field="target_date")
        start = parse_iso_date(today, field="today") if today else self.today()
        # one snapshot for every row, so all rows come from the same model
        dataset = self.get_current()
        return self.sampler.build_table(
            start,
            target,
            lambda day: self.assembler.predict_point(dataset, day),
        )

    def model_info(self) -> Optional[FittedModel]:
        return self.engine.current_model

    def warm_up(self) -> FittedModel:
        """Load the dataset and fit its model ahead of the first request."""
        dataset = self.get_current()
        return self.engine.get_model(dataset.trend_series, dataset.source_version)


def build_service(settings: config.Settings | None = None) -> Co2ForecastService:
    """Wire the service from configuration."""
    settings = settings or config.settings
    cache = DataCache(
        build_data_source(settings),
        ttl_seconds=settings.dataset_ttl_seconds,
        max_stale_seconds=settings.max_stale_seconds,
        refresh_backoff_seconds=settings.refresh_backoff_seconds,
    )
    engine = ForecastEngine.from_settings(settings)
    cache.subscribe(engine.on_dataset_refreshed)
    return Co2ForecastService(
        cache=cache,
        engine=engine,
        assembler=TrendAssembler(engine, history_years=settings.history_years),
        sampler=AdaptiveSampler(parallelism=settings.table_parallelism),
    )
