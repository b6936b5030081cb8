"""Seasonal ARIMA forecasting of the CO2 trend series.

The annual season has a non-integer period (365.25 daily observations), which
seasonal ARIMA lags cannot express and which would be impractically long even
if rounded. The season is instead carried by Fourier regressors of that period
(dynamic harmonic regression) on top of an ARIMA error model. Differencing is
chosen by repeated KPSS tests, then AR/MA orders and the number of harmonics
are searched stepwise by AIC.
"""

from __future__ import annotations

import hashlib
import math
import threading
import warnings
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from statsmodels.tools.sm_exceptions import ConvergenceWarning, InterpolationWarning, ValueWarning
from statsmodels.tsa.arima.model import ARIMA
from statsmodels.tsa.stattools import kpss

from co2_forecast.domain import Dataset, ForecastResult
from co2_forecast.errors import DateRangeError, HorizonLimitError, ModelFitError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="forecast_engine")

KPSS_ALPHA = 0.05
TREND_BY_DIFF = {0: "c", 1: "t"}  # d=1 with 't' is drift; d>=2 takes no trend term

Candidate = Tuple[int, int, int]  # (p, q, harmonics)


@dataclass(frozen=True)
class FittedModel:
    """Fitted ARIMA results bound to the dataset version they were fit on."""
    results: Any
    order: Tuple[int, int, int]
    harmonics: int
    trend: str
    aic: float
    n_obs: int
    seasonal_period: float
    source_version: str
    fitted_at: datetime

    def describe(self) -> Dict[str, Any]:
        return {
            "order": list(self.order),
            "harmonics": self.harmonics,
            "trend": self.trend,
            "aic": round(self.aic, 3),
            "n_obs": self.n_obs,
            "source_version": self.source_version,
            "fitted_at": self.fitted_at.isoformat(),
        }


def fourier_terms(start: int, length: int, period: float, harmonics: int) -> Optional[np.ndarray]:
    """sin/cos columns for harmonics 1..K at time indices ``start .. start+length-1``."""
    if harmonics <= 0:
        return None
    t = np.arange(start, start + length, dtype=float)
    columns = []
    for k in range(1, harmonics + 1):
        angle = 2.0 * math.pi * k * t / period
        columns.append(np.sin(angle))
        columns.append(np.cos(angle))
    return np.column_stack(columns)


def series_key(values: np.ndarray) -> str:
    """Content hash for series passed without a dataset version."""
    return "series:" + hashlib.sha256(np.ascontiguousarray(values, dtype=float).tobytes()).hexdigest()[:16]


class ForecastEngine:
    """
    Fits the trend model lazily and produces multi-step forecasts.

    Fitted models are cached by dataset version, at most ``max_models`` of
    them (the current dataset's and the one it replaced, so requests still
    pinned to the previous snapshot do not force refits). Fits are serialized
    so concurrent callers for the same version share one fit. The longest
    forecast computed from each model is kept too, and shorter horizons are
    sliced from it (state-space forecasts for step ``h`` do not depend on the
    total horizon).
    """

    def __init__(
        self,
        *,
        seasonal_period: float = 365.25,
        min_seasonal_cycles: float = 2.0,
        max_ar_order: int = 2,
        max_ma_order: int = 2,
        max_diff: int = 2,
        fourier_terms: int = 2,
        fit_maxiter: int = 50,
        max_horizon_days: Optional[int] = None,
        stepwise: bool = True,
        max_models: int = 2,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        if seasonal_period <= 1:
            raise ValueError("seasonal_period must be greater than 1")
        self.seasonal_period = seasonal_period
        self.min_seasonal_cycles = min_seasonal_cycles
        self.max_ar_order = max_ar_order
        self.max_ma_order = max_ma_order
        self.max_diff = max_diff
        self.fourier_terms = fourier_terms
        self.fit_maxiter = fit_maxiter
        self.max_horizon_days = max_horizon_days
        self.stepwise = stepwise
        self._now = now
        self.max_models = max(1, max_models)
        self._models: "OrderedDict[str, FittedModel]" = OrderedDict()
        self._longest: Dict[str, ForecastResult] = {}
        self._latest_version: Optional[str] = None
        self._fit_lock = threading.Lock()
        self.fit_count = 0

    @classmethod
    def from_settings(cls, settings) -> "ForecastEngine":
        return cls(
            seasonal_period=settings.seasonal_period,
            min_seasonal_cycles=settings.min_seasonal_cycles,
            max_ar_order=settings.max_ar_order,
            max_ma_order=settings.max_ma_order,
            max_diff=settings.max_diff,
            fourier_terms=settings.fourier_terms,
            fit_maxiter=settings.fit_maxiter,
            max_horizon_days=settings.max_horizon_days,
        )

    @property
    def min_points(self) -> int:
        """Smallest accepted series length: strictly more than the required seasonal cycles."""
        return int(math.floor(self.seasonal_period * self.min_seasonal_cycles)) + 1

    @property
    def current_model(self) -> Optional[FittedModel]:
        """Model for the latest refreshed dataset, or the most recently fitted one."""
        if self._latest_version is not None:
            return self._models.get(self._latest_version)
        if not self._models:
            return None
        return next(reversed(self._models.values()))

    def cached_versions(self) -> List[str]:
        return list(self._models)

    # ------------------------------------------------------------------
    # cache management
    # ------------------------------------------------------------------

    def invalidate(self, source_version: Optional[str] = None) -> None:
        """Drop cached models (only the one bound to ``source_version``, when given)."""
        versions = list(self._models) if source_version is None else [source_version]
        for version in versions:
            if self._models.pop(version, None) is not None:
                logger.info("Discarding fitted model", extra={"source_version": version})
            self._longest.pop(version, None)

    def on_dataset_refreshed(self, dataset: Dataset) -> None:
        """
        Cache listener: keep the model for the new version and for the version
        it replaced; anything older is discarded.
        """
        retiring = self._latest_version
        self._latest_version = dataset.source_version
        keep = {dataset.source_version, retiring}
        for version in [v for v in list(self._models) if v not in keep]:
            self.invalidate(version)

    def _store(self, model: FittedModel) -> None:
        """Insert a new fit, evicting the oldest fits beyond ``max_models``. Caller holds the fit lock."""
        self._models[model.source_version] = model
        self._longest.pop(model.source_version, None)
        while len(self._models) > self.max_models:
            oldest = next(iter(self._models))
            self.invalidate(oldest)

    # ------------------------------------------------------------------
    # fitting
    # ------------------------------------------------------------------

    def _check_series(self, series: Sequence[float]) -> np.ndarray:
        y = np.asarray(series, dtype=float)
        if y.ndim != 1:
            raise ModelFitError("Series must be one-dimensional")
        if len(y) < self.min_points:
            raise ModelFitError(
                f"Series has {len(y)} points; at least {self.min_points} are needed "
                f"(more than {self.min_seasonal_cycles:g} cycles of {self.seasonal_period:g})"
            )
        if not np.all(np.isfinite(y)):
            raise ModelFitError("Series contains non-finite values")
        if float(np.std(y)) == 0.0:
            raise ModelFitError("Series has zero variance")
        return y

    def select_differencing(self, y: np.ndarray) -> int:
        """Smallest d for which the KPSS test does not reject level stationarity."""
        current = y
        for d in range(self.max_diff + 1):
            if float(np.std(current)) == 0.0:
                return max(d - 1, 0)
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", InterpolationWarning)
                _stat, p_value, _lags, _crit = kpss(current, regression="c", nlags="auto")
            logger.debug("KPSS test", extra={"d": d, "p_value": p_value})
            if p_value >= KPSS_ALPHA or d == self.max_diff:
                return d
            current = np.diff(current)
        return self.max_diff

    def _fit_candidate(self, y: np.ndarray, d: int, candidate: Candidate):
        p, q, harmonics = candidate
        exog = fourier_terms(0, len(y), self.seasonal_period, harmonics)
        trend = TREND_BY_DIFF.get(d, "n")
        model = ARIMA(y, exog=exog, order=(p, d, q), trend=trend)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceWarning)
            warnings.simplefilter("ignore", ValueWarning)
            warnings.simplefilter("ignore", UserWarning)
            warnings.simplefilter("ignore", RuntimeWarning)
            results = model.fit(method_kwargs={"maxiter": self.fit_maxiter})
        return results, trend

    def _neighbours(self, candidate: Candidate) -> Iterable[Candidate]:
        p, q, harmonics = candidate
        for dp, dq in ((1, 0), (-1, 0), (0, 1), (0, -1), (1, 1), (-1, -1)):
            np_, nq = p + dp, q + dq
            if 0 <= np_ <= self.max_ar_order and 0 <= nq <= self.max_ma_order:
                yield (np_, nq, harmonics)
        if self.fourier_terms > 0:
            yield (p, q, 0 if harmonics else self.fourier_terms)

    def _initial_candidates(self) -> list[Candidate]:
        k = self.fourier_terms
        if not self.stepwise:
            return [
                (p, q, h)
                for h in sorted({0, k})
                for p in range(self.max_ar_order + 1)
                for q in range(self.max_ma_order + 1)
            ]
        seeds = [
            (min(2, self.max_ar_order), min(2, self.max_ma_order), k),
            (0, 0, k),
            (min(1, self.max_ar_order), 0, k),
            (0, min(1, self.max_ma_order), k),
        ]
        return list(dict.fromkeys(seeds))

    def fit(self, series: Sequence[float], source_version: Optional[str] = None) -> FittedModel:
        """Select and fit a model for ``series``. Does not touch the cache."""
        y = self._check_series(series)
        version = source_version or series_key(y)
        d = self.select_differencing(y)
        logger.info(
            "Fitting trend model",
            extra={"n_obs": len(y), "d": d, "source_version": version, "stepwise": self.stepwise},
        )

        tried: Dict[Candidate, float] = {}
        best: Optional[Tuple[float, Candidate, Any, str]] = None

        def evaluate(candidate: Candidate) -> bool:
            nonlocal best
            if candidate in tried:
                return False
            try:
                results, trend = self._fit_candidate(y, d, candidate)
            except (ValueError, np.linalg.LinAlgError) as exc:
                logger.debug("Candidate fit failed", extra={"candidate": candidate, "error": str(exc)})
                tried[candidate] = math.inf
                return False
            aic = float(results.aic)
            tried[candidate] = aic
            logger.debug("Candidate fitted", extra={"candidate": candidate, "aic": aic})
            if math.isfinite(aic) and (best is None or aic < best[0]):
                best = (aic, candidate, results, trend)
                return True
            return False

        for candidate in self._initial_candidates():
            evaluate(candidate)

        if self.stepwise:
            improved = best is not None
            while improved:
                improved = False
                for candidate in self._neighbours(best[1]):
                    if evaluate(candidate):
                        improved = True
                        break

        if best is None:
            raise ModelFitError(f"No candidate model could be fit ({len(tried)} tried)")

        aic, (p, q, harmonics), results, trend = best
        fitted = FittedModel(
            results=results,
            order=(p, d, q),
            harmonics=harmonics,
            trend=trend,
            aic=aic,
            n_obs=len(y),
            seasonal_period=self.seasonal_period,
            source_version=version,
            fitted_at=self._now(),
        )
        self.fit_count += 1
        logger.info("Selected trend model", extra={**fitted.describe(), "candidates_tried": len(tried)})
        return fitted

    def get_model(self, series: Sequence[float], source_version: Optional[str] = None) -> FittedModel:
        """Cached model for this version, fitting one if needed (single-flight)."""
        version = source_version or series_key(np.asarray(series, dtype=float))
        model = self._models.get(version)
        if model is not None:
            return model
        with self._fit_lock:
            model = self._models.get(version)
            if model is not None:
                return model
            model = self.fit(series, version)
            self._store(model)
            return model

    # ------------------------------------------------------------------
    # forecasting
    # ------------------------------------------------------------------

    def _check_horizon(self, horizon_days: int) -> None:
        if isinstance(horizon_days, bool) or not isinstance(horizon_days, (int, np.integer)):
            raise DateRangeError(f"Forecast horizon must be an integer number of days, got {horizon_days!r}")
        if horizon_days <= 0:
            raise DateRangeError(f"Forecast horizon must be positive, got {horizon_days}")
        if self.max_horizon_days is not None and horizon_days > self.max_horizon_days:
            raise HorizonLimitError(
                f"Forecast horizon of {horizon_days} days exceeds the limit of {self.max_horizon_days}"
            )

    def _run_forecast(self, model: FittedModel, horizon_days: int, origin_date: Optional[date]) -> ForecastResult:
        exog = fourier_terms(model.n_obs, horizon_days, model.seasonal_period, model.harmonics)
        try:
            forecast = model.results.get_forecast(steps=horizon_days, exog=exog)
            mean = np.asarray(forecast.predicted_mean, dtype=float)
            ci80 = np.asarray(forecast.conf_int(alpha=0.20), dtype=float)
            ci95 = np.asarray(forecast.conf_int(alpha=0.05), dtype=float)
        except (ValueError, np.linalg.LinAlgError) as exc:
            raise ModelFitError(f"Forecast failed: {exc}") from exc
        if not (np.all(np.isfinite(mean)) and np.all(np.isfinite(ci80)) and np.all(np.isfinite(ci95))):
            raise ModelFitError("Forecast produced non-finite values")
        return ForecastResult(
            origin_date=origin_date,
            horizon_days=horizon_days,
            mean=tuple(mean.tolist()),
            lower80=tuple(ci80[:, 0].tolist()),
            upper80=tuple(ci80[:, 1].tolist()),
            lower95=tuple(ci95[:, 0].tolist()),
            upper95=tuple(ci95[:, 1].tolist()),
            model_version=model.source_version,
        )

    def forecast(
        self,
        series: Sequence[float],
        horizon_days: int,
        *,
        source_version: Optional[str] = None,
        origin_date: Optional[date] = None,
    ) -> ForecastResult:
        """
        Forecast ``horizon_days`` steps past the end of ``series``.

        Returns point forecasts and 80%/95% prediction intervals, one entry
        per step. Raises ``ModelFitError`` for unusable series and
        ``DateRangeError`` for a non-positive horizon. ``HorizonLimitError``
        is raised only when ``max_horizon_days`` is configured and exceeded.
        """
        self._check_horizon(horizon_days)
        model = self.get_model(series, source_version)

        longest = self._longest.get(model.source_version)
        if (
            longest is None
            or longest.model_version != model.source_version
            or longest.horizon_days < horizon_days
        ):
            longest = self._run_forecast(model, horizon_days, origin_date)
            self._longest[model.source_version] = longest
            return longest

        if longest.horizon_days == horizon_days and longest.origin_date == origin_date:
            return longest
        h = horizon_days
        return ForecastResult(
            origin_date=origin_date,
            horizon_days=h,
            mean=longest.mean[:h],
            lower80=longest.lower80[:h],
            upper80=longest.upper80[:h],
            lower95=longest.lower95[:h],
            upper95=longest.upper95[:h],
            model_version=longest.model_version,
        )

    def forecast_dataset(self, dataset: Dataset, horizon_days: int) -> ForecastResult:
        """Forecast from a Dataset's trend series, caching under its version."""
        return self.forecast(
            dataset.trend_series,
            horizon_days,
            source_version=dataset.source_version,
            origin_date=dataset.latest_date,
        )
