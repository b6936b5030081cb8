import os
import unittest

from co2_forecast.config import Settings


class TestConfig(unittest.TestCase):
    def test_settings_defaults(self):
        previous = os.environ.pop("CO2_DATASET_TTL_SECONDS", None)
        try:
            s = Settings()
            self.assertEqual(s.dataset_ttl_seconds, 86400)
            self.assertEqual(s.seasonal_period, 365.25)
            self.assertEqual(s.history_years, 10)
            self.assertIsNone(s.max_stale_seconds)
            self.assertIsNone(s.max_horizon_days)
        finally:
            if previous is not None:
                os.environ["CO2_DATASET_TTL_SECONDS"] = previous

    def test_settings_env_override(self):
        previous = os.environ.get("CO2_UPSTREAM_URL")
        try:
            os.environ["CO2_UPSTREAM_URL"] = "http://example.com/api/"
            s = Settings()
            self.assertEqual(s.upstream_url, "http://example.com/api")
        finally:
            if previous is None:
                os.environ.pop("CO2_UPSTREAM_URL", None)
            else:
                os.environ["CO2_UPSTREAM_URL"] = previous

    def test_data_source_normalized(self):
        previous = os.environ.get("CO2_DATA_SOURCE")
        try:
            os.environ["CO2_DATA_SOURCE"] = " File "
            s = Settings()
            self.assertEqual(s.data_source, "file")
        finally:
            if previous is None:
                os.environ.pop("CO2_DATA_SOURCE", None)
            else:
                os.environ["CO2_DATA_SOURCE"] = previous

    def test_stale_bound_override(self):
        previous = os.environ.get("CO2_MAX_STALE_SECONDS")
        try:
            os.environ["CO2_MAX_STALE_SECONDS"] = "3600"
            s = Settings()
            self.assertEqual(s.max_stale_seconds, 3600)
        finally:
            if previous is None:
                os.environ.pop("CO2_MAX_STALE_SECONDS", None)
            else:
                os.environ["CO2_MAX_STALE_SECONDS"] = previous


if __name__ == "__main__":
    unittest.main()
