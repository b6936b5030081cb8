"""Client for the daily atmospheric CO2 concentration API on RapidAPI."""
from __future__ import annotations

from typing import Any, Dict, Optional

import requests
from retry_requests import retry

from co2_forecast.config import settings
from co2_forecast.errors import NetworkError, ParseError
from utils.logging_utils import get_tagged_logger, mask_secret

logger = get_tagged_logger(__name__, tag="rapidapi_client")

# Retries cover transient 5xx and connection errors; freshness is handled by DataCache.
# Each attempt gets the full timeout, so CO2_UPSTREAM_RETRIES=0 makes it a hard bound.
session = retry(
    requests.Session(),
    retries=settings.upstream_retries,
    backoff_factor=settings.upstream_backoff_factor,
)


def _headers(api_key: Optional[str], host: str) -> Dict[str, str]:
    """Build RapidAPI auth headers."""
    headers = {"X-RapidAPI-Host": host}
    if api_key:
        headers["X-RapidAPI-Key"] = api_key
    return headers


def fetch_co2_payload(
    url: Optional[str] = None,
    *,
    api_key: Optional[str] = None,
    host: Optional[str] = None,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """
    GET the upstream payload and decode it as JSON.

    Timeouts, connection errors and non-2xx statuses raise ``NetworkError``;
    a body that is not JSON raises ``ParseError``. Shape and value checks
    happen later in ``parse_co2_payload``.
    """
    url = url or settings.upstream_url
    host = host or settings.upstream_host
    api_key = api_key if api_key is not None else settings.upstream_api_key
    timeout = timeout if timeout is not None else settings.upstream_timeout_seconds

    logger.info(
        "Requesting CO2 data",
        extra={"url": url, "api_key": mask_secret(api_key), "timeout": timeout},
    )
    try:
        resp = session.get(url, headers=_headers(api_key, host), timeout=timeout)
        resp.raise_for_status()
    except requests.Timeout as exc:
        logger.error("CO2 request timed out after %ss", timeout)
        raise NetworkError(f"Upstream request timed out after {timeout}s") from exc
    except requests.HTTPError as exc:
        status = exc.response.status_code if exc.response is not None else "unknown"
        logger.error("CO2 request failed with status %s", status)
        raise NetworkError(f"Upstream returned HTTP {status}") from exc
    except requests.RequestException as exc:
        logger.error("CO2 request error: %s", exc)
        raise NetworkError(f"Upstream request failed: {exc}") from exc

    logger.debug("CO2 response received", extra={"status": resp.status_code})
    try:
        return resp.json()
    except ValueError as exc:
        logger.error("CO2 response is not JSON")
        raise ParseError("Upstream response is not valid JSON") from exc
