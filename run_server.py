import os

import uvicorn

from co2_forecast.config import settings
from co2_forecast.errors import Co2ForecastError
from utils.logging_utils import get_tagged_logger, setup_logging

logger = get_tagged_logger(__name__, tag="server")


def maybe_warm_start() -> None:
    """
    Optionally fetch the dataset and fit the model before serving, so the
    first request does not pay for the order search. Controlled by
    CO2_WARM_START=true. Failures are logged and the server starts anyway;
    the cache retries on the first request.
    """
    if not settings.warm_start:
        logger.info("Skipping warm start (CO2_WARM_START=false)")
        return

    from co2_forecast.api import SERVICE

    try:
        model = SERVICE.warm_up()
    except Co2ForecastError as exc:
        logger.error("Warm start failed; continuing with lazy loading", extra={"error": str(exc)})
        return
    logger.info("Warm start complete", extra=model.describe())


if __name__ == "__main__":
    setup_logging(level=settings.log_level)
    maybe_warm_start()

    uvicorn.run(
        "co2_forecast.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=False,
    )
