"""HTTP API for CO2 data, predictions, trend windows and prediction tables."""

import hmac
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel

from .co2_service import Co2ForecastService, build_service
from .config import settings
from .domain import PointPrediction, PredictionTable, TrendWindow
from .errors import InputError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="co2_forecast/api")

API_VERSION = "1.0.0"


def require_api_key(x_api_key: str | None = Header(default=None)):
    """Validate the X-API-Key header against the configured static key, if any."""
    if not settings.api_key:
        return
    if not x_api_key:
        logger.debug("No API key provided")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")
    if hmac.compare_digest(str(x_api_key), str(settings.api_key)):
        return
    logger.debug("Invalid API key provided")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


router = APIRouter(dependencies=[Depends(require_api_key)])
SERVICE: Co2ForecastService = build_service(settings)


def get_service() -> Co2ForecastService:
    """Dependency returning the process-wide service (swappable in tests)."""
    return SERVICE


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str
    dataset_loaded: bool
    source_version: str | None = None
    latest_data_date: date | None = None
    model_fitted: bool


class Co2Arrays(BaseModel):
    """Same column layout as the upstream payload, with typed values."""
    year: list[int]
    month: list[int]
    day: list[int]
    cycle: list[float]
    trend: list[float]


class CurrentResponse(BaseModel):
    co2: Co2Arrays
    fetched_at: datetime
    source_version: str
    latest_data_date: date


class RawPoint(BaseModel):
    date: date
    type: str
    value: float


class PredictRequest(BaseModel):
    """Incoming prediction payload."""
    prediction_date: str


class IntervalSeries(BaseModel):
    lower: list[float]
    upper: list[float]


class PredictResponse(BaseModel):
    prediction_date: date
    latest_data_date: date
    predicted_value: float
    ci80: IntervalSeries
    ci95: IntervalSeries


class TrendPoint(BaseModel):
    date: date
    value: float
    type: str
    lower_95: float | None = None
    upper_95: float | None = None


class TrendMetadata(BaseModel):
    latest_data_date: date
    prediction_date: date
    window_start: date | None = None


class TrendResponse(BaseModel):
    data: list[TrendPoint]
    predicted_value: float
    metadata: TrendMetadata


class TableRowModel(BaseModel):
    date: date
    predicted_value: float
    lower_95: float | None = None
    upper_95: float | None = None


class TableFailureModel(BaseModel):
    date: date
    error: str
    kind: str


class TableResponse(BaseModel):
    today: date
    target_date: date
    rows: list[TableRowModel]
    failures: list[TableFailureModel]


def _to_predict_response(prediction: PointPrediction) -> PredictResponse:
    fc = prediction.forecast
    return PredictResponse(
        prediction_date=prediction.prediction_date,
        latest_data_date=prediction.latest_data_date,
        predicted_value=prediction.predicted_value,
        ci80=IntervalSeries(lower=list(fc.lower80), upper=list(fc.upper80)),
        ci95=IntervalSeries(lower=list(fc.lower95), upper=list(fc.upper95)),
    )


def _to_trend_response(window: TrendWindow) -> TrendResponse:
    data = [TrendPoint(date=p.date, value=p.value, type=p.type.value) for p in window.historical]
    data.extend(
        TrendPoint(date=p.date, value=p.value, type=p.type.value, lower_95=p.lower95, upper_95=p.upper95)
        for p in window.predicted
    )
    return TrendResponse(
        data=data,
        predicted_value=window.predicted_value,
        metadata=TrendMetadata(
            latest_data_date=window.latest_data_date,
            prediction_date=window.prediction_date,
            window_start=window.window_start,
        ),
    )


def _to_table_response(table: PredictionTable) -> TableResponse:
    return TableResponse(
        today=table.today,
        target_date=table.target,
        rows=[
            TableRowModel(date=r.date, predicted_value=r.predicted_value, lower_95=r.lower95, upper_95=r.upper95)
            for r in table.rows
        ],
        failures=[TableFailureModel(date=f.date, error=f.error, kind=f.kind) for f in table.failures],
    )


@router.get("/health", response_model=HealthResponse)
def health(service: Co2ForecastService = Depends(get_service)):
    """Liveness plus cache/model status; never triggers a fetch."""
    snapshot = service.cache.snapshot()
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=API_VERSION,
        dataset_loaded=snapshot is not None,
        source_version=snapshot.source_version if snapshot else None,
        latest_data_date=snapshot.data.latest_date if snapshot else None,
        model_fitted=service.model_info() is not None,
    )


@router.get("/co2/current", response_model=CurrentResponse)
def current(service: Co2ForecastService = Depends(get_service)):
    """Return the cached historical series in upstream column layout."""
    logger.info("Fetching current CO2 data")
    dataset = service.get_current()
    return CurrentResponse(
        co2=Co2Arrays(
            year=[p.date.year for p in dataset.points],
            month=[p.date.month for p in dataset.points],
            day=[p.date.day for p in dataset.points],
            cycle=list(dataset.cycle_series),
            trend=list(dataset.trend_series),
        ),
        fetched_at=dataset.fetched_at,
        source_version=dataset.source_version,
        latest_data_date=dataset.latest_date,
    )


@router.get("/co2/raw", response_model=list[RawPoint])
def raw(
    end_date: Optional[str] = Query(default=None),
    service: Co2ForecastService = Depends(get_service),
):
    """Long-format cycle/trend rows for plotting."""
    logger.info("Processing raw CO2 data")
    return [RawPoint(**row) for row in service.get_raw_series(end_date)]


@router.post("/co2/predict", response_model=PredictResponse)
def predict(
    req: Optional[PredictRequest] = Body(default=None),
    prediction_date: Optional[str] = Query(default=None),
    service: Co2ForecastService = Depends(get_service),
):
    """Predict the trend value for one date, with per-day 80%/95% intervals."""
    requested = req.prediction_date if req is not None else prediction_date
    if not requested:
        raise InputError("prediction_date is required. Use YYYY-MM-DD")
    logger.info(f"Generating prediction for date: {requested}")
    return _to_predict_response(service.predict(requested))


@router.get("/co2/trend", response_model=TrendResponse)
def trend(
    prediction_date: str = Query(...),
    service: Co2ForecastService = Depends(get_service),
):
    """Historical trend window plus daily forecast up to the prediction date."""
    logger.info(f"Generating trend analysis for date: {prediction_date}")
    return _to_trend_response(service.trend(prediction_date))


@router.get("/co2/table", response_model=TableResponse)
def table(
    target_date: str = Query(...),
    today: Optional[str] = Query(default=None),
    service: Co2ForecastService = Depends(get_service),
):
    """Best-effort prediction table on the adaptive date grid."""
    logger.info(f"Building prediction table through {target_date}")
    return _to_table_response(service.prediction_table(target_date, today=today))
