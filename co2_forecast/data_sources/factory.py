"""Factory helpers for choosing the upstream CO2 data source at startup."""

from __future__ import annotations

from pathlib import Path

from co2_forecast import config
from co2_forecast.data_sources.base import CallableCo2DataSource, Co2DataSource, FileCo2DataSource
from co2_forecast.data_sources.rapidapi_client import fetch_co2_payload
from utils.logging_utils import get_tagged_logger, mask_secret

logger = get_tagged_logger(__name__, tag="data_sources/factory")


DEFAULT_SOURCE_NAME = "rapidapi"


def build_data_source(settings: config.Settings | None = None) -> Co2DataSource:
    """Instantiate the configured CO2 data source."""
    settings = settings or config.settings
    source = (settings.data_source or DEFAULT_SOURCE_NAME).lower()

    if source == "rapidapi":
        logger.info(
            "Using RapidAPI data source",
            extra={"url": settings.upstream_url, "api_key": mask_secret(settings.upstream_api_key)},
        )
        if not settings.upstream_api_key:
            logger.warning("No upstream API key configured; requests will likely be rejected")
        return CallableCo2DataSource(
            fetch=lambda: fetch_co2_payload(
                settings.upstream_url,
                api_key=settings.upstream_api_key,
                host=settings.upstream_host,
                timeout=settings.upstream_timeout_seconds,
            )
        )

    if source == "file":
        if not settings.data_file_path:
            raise ValueError("data_file_path must be set for the file data source")
        logger.info("Using file data source", extra={"path": settings.data_file_path})
        return FileCo2DataSource(path=Path(settings.data_file_path))

    raise ValueError(f"Unknown data source '{source}'")
