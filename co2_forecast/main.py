"""FastAPI application setup for the CO2 forecast service."""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import API_VERSION, router as api_router
from .config import settings
from .errors import CLIENT_FAULT, Co2ForecastError, DateRangeError, NetworkError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="co2_forecast/main")

app = FastAPI(
    title="CO2 Prediction API",
    description="CO2 concentration predictions and trend analysis",
    version=API_VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-API-Key"],
)


def status_for(exc: Co2ForecastError) -> int:
    """Map an error kind to an HTTP status by type."""
    if exc.fault == CLIENT_FAULT:
        return 400
    if isinstance(exc, NetworkError):
        return 502
    return 500


@app.exception_handler(Co2ForecastError)
async def handle_forecast_error(_request: Request, exc: Co2ForecastError):
    """Render typed service errors as JSON with a status chosen by error kind."""
    status_code = status_for(exc)
    body = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, DateRangeError) and exc.latest_data_date is not None:
        body["latest_data_date"] = exc.latest_data_date.isoformat()
    if status_code >= 500:
        logger.error("Request failed: %s", exc, extra={"error": type(exc).__name__})
    else:
        logger.info("Rejected request: %s", exc, extra={"error": type(exc).__name__})
    return JSONResponse(status_code=status_code, content=body)


app.include_router(api_router, prefix="/v1")
