"""Upstream CO2 data sources and payload validation."""

from .base import CallableCo2DataSource, Co2DataSource, FileCo2DataSource
from .factory import build_data_source
from .parsing import parse_co2_payload
from .rapidapi_client import fetch_co2_payload

__all__ = [
    "build_data_source",
    "Co2DataSource",
    "CallableCo2DataSource",
    "FileCo2DataSource",
    "fetch_co2_payload",
    "parse_co2_payload",
]
