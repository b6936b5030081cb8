"""Closed set of error kinds raised by the forecasting core.

Each kind declares whether it is the caller's fault or the service's, so the
HTTP boundary can map it to a status class without inspecting message text.
"""

from __future__ import annotations

import datetime as dt
from typing import Optional

CLIENT_FAULT = "client"
SERVER_FAULT = "server"


class Co2ForecastError(Exception):
    """Base class for all typed service errors."""
    fault: str = SERVER_FAULT


class NetworkError(Co2ForecastError):
    """Upstream unreachable, timed out, or answered with a non-2xx status."""


class StaleDataError(NetworkError):
    """Refresh failed and the last good dataset is older than the stale bound."""


class ParseError(Co2ForecastError):
    """Upstream payload is not the expected JSON shape."""


class ValidationError(Co2ForecastError):
    """Payload fields are present but not valid numbers or calendar dates."""


class ModelFitError(Co2ForecastError):
    """Series too short or degenerate, or the model fit failed."""


class DateRangeError(Co2ForecastError):
    """Requested date is not strictly after the latest observation."""
    fault = CLIENT_FAULT

    def __init__(self, message: str, latest_data_date: Optional[dt.date] = None) -> None:
        super().__init__(message)
        self.latest_data_date = latest_data_date


class InputError(Co2ForecastError):
    """Malformed input at the boundary, e.g. a date not in YYYY-MM-DD form."""
    fault = CLIENT_FAULT


class HorizonLimitError(Co2ForecastError):
    """Horizon exceeds an operator-configured ``max_horizon_days``."""
    fault = CLIENT_FAULT
