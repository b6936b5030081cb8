"""Builders for synthetic CO2 payloads, datasets and fakes shared by the tests."""
import datetime as dt
import math
from datetime import timezone

import numpy as np

from co2_forecast.cache import compute_source_version
from co2_forecast.domain import Dataset, ForecastResult, ObservationPoint


def trend_values(n: int, *, seed: int = 7, base: float = 400.0, slope: float = 0.0065) -> list[float]:
    """Rising trend with a faint annual wiggle and AR(1) noise."""
    rng = np.random.default_rng(seed)
    noise = np.zeros(n)
    shocks = rng.normal(0.0, 0.05, n)
    for i in range(1, n):
        noise[i] = 0.6 * noise[i - 1] + shocks[i]
    t = np.arange(n)
    return list(base + slope * t + 0.05 * np.sin(2 * math.pi * t / 365.25) + noise)


def make_points(start: dt.date, end: dt.date, *, seed: int = 7) -> list[ObservationPoint]:
    n = (end - start).days + 1
    trend = trend_values(n, seed=seed)
    points = []
    for i in range(n):
        day = start + dt.timedelta(days=i)
        cycle = trend[i] + 3.0 * math.sin(2 * math.pi * i / 365.25)
        points.append(ObservationPoint(date=day, cycle=cycle, trend=trend[i]))
    return points


def make_dataset(start: dt.date = dt.date(2015, 1, 1), end: dt.date = dt.date(2024, 6, 1), *, seed: int = 7) -> Dataset:
    points = make_points(start, end, seed=seed)
    return Dataset(
        points=tuple(points),
        fetched_at=dt.datetime(2024, 6, 2, tzinfo=timezone.utc),
        source_version=compute_source_version(points),
    )


def make_payload(start: dt.date, days: int, *, as_strings: bool = True, seed: int = 7) -> dict:
    """Upstream-shaped payload, values as strings like the live API."""
    points = make_points(start, start + dt.timedelta(days=days - 1), seed=seed)
    fmt = (lambda v: str(v)) if as_strings else (lambda v: v)
    return {
        "co2": {
            "year": [fmt(p.date.year) for p in points],
            "month": [fmt(p.date.month) for p in points],
            "day": [fmt(p.date.day) for p in points],
            "cycle": [fmt(round(p.cycle, 2)) for p in points],
            "trend": [fmt(round(p.trend, 2)) for p in points],
        }
    }


class FakeSource:
    """Data source returning queued payloads or raising queued errors."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    def fetch_payload(self):
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeEngine:
    """Deterministic linear forecasts; interval width grows with sqrt(step)."""

    def __init__(self, slope: float = 0.01, fail_on: int | None = None):
        self.slope = slope
        self.fail_on = fail_on
        self.calls: list[int] = []
        self.current_model = None

    def get_model(self, series, source_version=None):
        self.current_model = {"source_version": source_version, "n_obs": len(series)}
        return self.current_model

    def forecast_dataset(self, dataset: Dataset, horizon_days: int) -> ForecastResult:
        from co2_forecast.errors import ModelFitError

        self.calls.append(horizon_days)
        if self.fail_on is not None and horizon_days == self.fail_on:
            raise ModelFitError("boom")
        last = dataset.trend_series[-1]
        mean = tuple(last + self.slope * (i + 1) for i in range(horizon_days))
        w80 = tuple(0.1 * math.sqrt(i + 1) for i in range(horizon_days))
        w95 = tuple(0.15 * math.sqrt(i + 1) for i in range(horizon_days))
        return ForecastResult(
            origin_date=dataset.latest_date,
            horizon_days=horizon_days,
            mean=mean,
            lower80=tuple(m - w for m, w in zip(mean, w80)),
            upper80=tuple(m + w for m, w in zip(mean, w80)),
            lower95=tuple(m - w for m, w in zip(mean, w95)),
            upper95=tuple(m + w for m, w in zip(mean, w95)),
            model_version=dataset.source_version,
        )


# 2015-01-01 .. 2024-06-01
PAYLOAD_DAYS = (dt.date(2024, 6, 1) - dt.date(2015, 1, 1)).days + 1


def make_service(source=None, engine=None, today=dt.date(2024, 6, 2)):
    """Service over a fake source and engine, with a manual clock on the cache."""
    from co2_forecast.cache import DataCache
    from co2_forecast.co2_service import Co2ForecastService
    from co2_forecast.sampler import AdaptiveSampler
    from co2_forecast.trend_assembler import TrendAssembler

    source = source or FakeSource(make_payload(dt.date(2015, 1, 1), PAYLOAD_DAYS))
    engine = engine or FakeEngine()
    return Co2ForecastService(
        cache=DataCache(source, ttl_seconds=3600, clock=FakeClock()),
        engine=engine,
        assembler=TrendAssembler(engine),
        sampler=AdaptiveSampler(),
        today=lambda: today,
    )
