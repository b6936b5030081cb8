import dataclasses
import datetime as dt
import unittest

import numpy as np

from co2_forecast.errors import DateRangeError, HorizonLimitError, ModelFitError
from co2_forecast.forecast_engine import ForecastEngine, fourier_terms
from co2_forecast.trend_assembler import TrendAssembler

from synthetic_data import make_dataset, trend_values


def _small_engine(**kwargs) -> ForecastEngine:
    """Narrow search so fits stay quick on ~800 points."""
    params = dict(max_ar_order=1, max_ma_order=1, fourier_terms=1, fit_maxiter=25)
    params.update(kwargs)
    return ForecastEngine(**params)


class TestFourierTerms(unittest.TestCase):
    def test_shape_and_period(self):
        terms = fourier_terms(0, 800, 365.25, 2)
        self.assertEqual(terms.shape, (800, 4))
        # sin(2*pi*t/P) repeats after one period
        self.assertAlmostEqual(fourier_terms(0, 1, 365.25, 1)[0, 0], fourier_terms(1461, 1, 365.25, 1)[0, 0], places=9)

    def test_zero_harmonics(self):
        self.assertIsNone(fourier_terms(0, 10, 365.25, 0))


class TestSeriesChecks(unittest.TestCase):
    def test_minimum_points_exceeds_two_cycles(self):
        engine = ForecastEngine()
        self.assertEqual(engine.min_points, 731)

    def test_short_series_rejected(self):
        engine = _small_engine()
        with self.assertRaises(ModelFitError):
            engine.forecast(trend_values(400), 5)
        self.assertEqual(engine.fit_count, 0)

    def test_zero_variance_rejected(self):
        engine = _small_engine()
        with self.assertRaises(ModelFitError):
            engine.forecast([410.0] * 800, 5)

    def test_non_finite_rejected(self):
        engine = _small_engine()
        series = trend_values(800)
        series[10] = float("nan")
        with self.assertRaises(ModelFitError):
            engine.forecast(series, 5)

    def test_bad_horizon_rejected(self):
        engine = _small_engine()
        series = trend_values(800)
        for horizon in (0, -3, 2.5):
            with self.assertRaises(DateRangeError):
                engine.forecast(series, horizon)
        self.assertEqual(engine.fit_count, 0)

    def test_configured_horizon_limit(self):
        engine = _small_engine(max_horizon_days=100)
        with self.assertRaises(HorizonLimitError):
            engine.forecast(trend_values(800), 101)
        self.assertEqual(engine.fit_count, 0)

    def test_horizon_unlimited_by_default(self):
        self.assertIsNone(ForecastEngine().max_horizon_days)

    def test_white_noise_needs_no_differencing(self):
        engine = _small_engine()
        rng = np.random.default_rng(3)
        self.assertEqual(engine.select_differencing(rng.normal(0, 1, 800)), 0)

    def test_trending_series_is_differenced(self):
        engine = _small_engine()
        self.assertGreaterEqual(engine.select_differencing(np.asarray(trend_values(800))), 1)


class TestForecastEngineFit(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.series = trend_values(800)
        cls.engine = _small_engine()
        cls.result_30 = cls.engine.forecast(cls.series, 30, source_version="v1", origin_date=dt.date(2024, 6, 1))

    def test_horizon_length(self):
        for h in (1, 7, 30):
            result = self.engine.forecast(self.series, h, source_version="v1")
            self.assertEqual(len(result.mean), h)
            self.assertEqual(len(result.lower80), h)
            self.assertEqual(len(result.upper95), h)

    def test_intervals_nest_around_mean(self):
        r = self.result_30
        for i in range(r.horizon_days):
            self.assertLessEqual(r.lower95[i], r.lower80[i])
            self.assertLessEqual(r.lower80[i], r.mean[i])
            self.assertLessEqual(r.mean[i], r.upper80[i])
            self.assertLessEqual(r.upper80[i], r.upper95[i])

    def test_intervals_widen_with_horizon(self):
        r = self.result_30
        self.assertGreater(r.upper95[-1] - r.lower95[-1], r.upper95[0] - r.lower95[0])

    def test_forecast_continues_the_level(self):
        self.assertLess(abs(self.result_30.mean[0] - self.series[-1]), 1.0)

    def test_model_cached_per_version(self):
        fits = self.engine.fit_count
        self.engine.forecast(self.series, 12, source_version="v1")
        self.assertEqual(self.engine.fit_count, fits)
        self.assertEqual(self.engine.current_model.source_version, "v1")

    def test_origin_date_maps_steps_to_days(self):
        self.assertEqual(self.result_30.date_at(0), dt.date(2024, 6, 2))
        self.assertEqual(self.result_30.date_at(29), dt.date(2024, 7, 1))

    def test_sliced_forecast_matches_fresh_forecast(self):
        fresh = _small_engine().forecast(self.series, 10, source_version="v1")
        for i in range(10):
            self.assertAlmostEqual(fresh.mean[i], self.result_30.mean[i], places=6)
            self.assertAlmostEqual(fresh.upper95[i], self.result_30.upper95[i], places=6)

    def test_horizon_beyond_ten_years(self):
        result = self.engine.forecast(self.series, 3700, source_version="v1")
        self.assertEqual(len(result.mean), 3700)
        self.assertTrue(np.all(np.isfinite(result.upper95)))

    def test_fitted_model_metadata(self):
        model = self.engine.current_model
        self.assertEqual(model.n_obs, 800)
        self.assertGreaterEqual(model.order[1], 1)
        self.assertIn(model.harmonics, (0, 1))
        self.assertTrue(np.isfinite(model.aic))


class TestForecastEngineInvalidation(unittest.TestCase):
    def test_new_version_triggers_refit_and_listener_drops_model(self):
        engine = _small_engine(max_ar_order=0, max_ma_order=1, fourier_terms=0)
        dataset = make_dataset(dt.date(2022, 1, 1), dt.date(2024, 3, 1))
        engine.forecast_dataset(dataset, 5)
        self.assertEqual(engine.fit_count, 1)

        engine.forecast_dataset(dataset, 9)
        self.assertEqual(engine.fit_count, 1)

        newer = dataclasses.replace(dataset, source_version="other")
        engine.on_dataset_refreshed(newer)
        self.assertIsNone(engine.current_model)

        engine.forecast_dataset(newer, 5)
        self.assertEqual(engine.fit_count, 2)
        self.assertEqual(engine.current_model.source_version, "other")

    def test_previous_version_kept_across_refresh(self):
        engine = _small_engine(max_ar_order=0, max_ma_order=1, fourier_terms=0)
        old = make_dataset(dt.date(2022, 1, 1), dt.date(2024, 3, 1))
        new = dataclasses.replace(old, source_version="new")
        engine.on_dataset_refreshed(old)
        engine.forecast_dataset(old, 5)

        engine.on_dataset_refreshed(new)
        # a table still running on the old snapshot interleaves with new requests
        for _ in range(5):
            engine.forecast_dataset(new, 5)
            engine.forecast_dataset(old, 7)
        self.assertEqual(engine.fit_count, 2)
        self.assertEqual(engine.current_model.source_version, "new")

        newest = dataclasses.replace(old, source_version="newest")
        engine.on_dataset_refreshed(newest)
        self.assertEqual(engine.cached_versions(), ["new"])

    def test_unversioned_series_cached_by_content(self):
        engine = _small_engine(max_ar_order=0, max_ma_order=1, fourier_terms=0)
        series = trend_values(760, seed=11)
        engine.forecast(series, 3)
        engine.forecast(list(series), 4)
        self.assertEqual(engine.fit_count, 1)


class TestLongHorizon(unittest.TestCase):
    def test_prediction_more_than_ten_years_out(self):
        engine = _small_engine(max_ar_order=0, max_ma_order=1, fourier_terms=0)
        dataset = make_dataset(dt.date(2022, 1, 1), dt.date(2024, 6, 1))
        target = dataset.latest_date + dt.timedelta(days=3654)
        window = TrendAssembler(engine).assemble(dataset, target)
        self.assertEqual(len(window.predicted), 3654)
        self.assertEqual(window.predicted[-1].date, target)


if __name__ == "__main__":
    unittest.main()
