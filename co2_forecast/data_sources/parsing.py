"""Validate the upstream CO2 payload and turn it into observation points."""
from __future__ import annotations

from typing import Any, Dict, List, Mapping

import numpy as np
import pandas as pd

from co2_forecast.domain import ObservationPoint
from co2_forecast.errors import ParseError, ValidationError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="data_sources/parsing")

REQUIRED_FIELDS = ("year", "month", "day", "cycle", "trend")
DATE_FIELDS = ("year", "month", "day")


def _extract_columns(payload: Any) -> Dict[str, list]:
    """Check the ``{co2: {field: [...]}}`` shape and return the field lists."""
    if not isinstance(payload, Mapping):
        raise ParseError("Payload must be a JSON object")
    co2 = payload.get("co2")
    if not isinstance(co2, Mapping):
        raise ParseError("Payload is missing the 'co2' object")

    missing = [name for name in REQUIRED_FIELDS if name not in co2]
    if missing:
        raise ParseError(f"Payload 'co2' object is missing fields: {', '.join(missing)}")

    columns: Dict[str, list] = {}
    for name in REQUIRED_FIELDS:
        values = co2[name]
        if not isinstance(values, list):
            raise ParseError(f"Field '{name}' must be an array")
        columns[name] = values

    lengths = {name: len(values) for name, values in columns.items()}
    if len(set(lengths.values())) != 1:
        raise ParseError(f"Payload arrays differ in length: {lengths}")
    return columns


def _coerce_numeric(name: str, values: list) -> pd.Series:
    """Coerce strings/numbers to float; anything else is a ValidationError."""
    for idx, v in enumerate(values):
        # bools are ints to pandas; they are not readings
        if isinstance(v, bool) or not isinstance(v, (str, int, float)):
            raise ValidationError(f"Field '{name}' has a non-numeric value at index {idx}: {v!r}")
    cleaned = [v.strip() if isinstance(v, str) else v for v in values]
    series = pd.to_numeric(pd.Series(cleaned, dtype=object), errors="coerce")
    bad = series.isna() | ~np.isfinite(series.astype(float))
    if bad.any():
        idx = int(bad.idxmax())
        raise ValidationError(
            f"Field '{name}' has a non-numeric value at index {idx}: {values[idx]!r}"
        )
    return series.astype(float)


def _assemble_dates(frame: pd.DataFrame) -> pd.Series:
    """Build calendar dates from year/month/day columns."""
    for name in DATE_FIELDS:
        fractional = frame[name] != frame[name].round()
        if fractional.any():
            idx = int(fractional.idxmax())
            raise ValidationError(f"Field '{name}' has a non-integer value at index {idx}")

    parts = frame[list(DATE_FIELDS)].astype("int64")
    dates = pd.to_datetime(parts, errors="coerce")
    if dates.isna().any():
        idx = int(dates.isna().idxmax())
        row = parts.iloc[idx]
        raise ValidationError(
            f"Invalid calendar date at index {idx}: {row['year']}-{row['month']}-{row['day']}"
        )
    return dates.dt.date


def parse_co2_payload(payload: Any) -> List[ObservationPoint]:
    """
    Validate a raw payload and return observations sorted by date.

    Raises ``ParseError`` when the shape is wrong and ``ValidationError`` when
    values cannot be read as numbers or real calendar dates, when the payload
    is empty, or when a date appears more than once.
    """
    columns = _extract_columns(payload)
    if not columns["year"]:
        raise ValidationError("Payload contains no observations")

    frame = pd.DataFrame({name: _coerce_numeric(name, columns[name]) for name in REQUIRED_FIELDS})
    frame["date"] = _assemble_dates(frame)
    frame = frame.sort_values("date", kind="stable").reset_index(drop=True)

    duplicated = frame["date"].duplicated()
    if duplicated.any():
        dup = frame.loc[duplicated, "date"].iloc[0]
        raise ValidationError(f"Duplicate observation date: {dup.isoformat()}")

    points = [
        ObservationPoint(date=row.date, cycle=float(row.cycle), trend=float(row.trend))
        for row in frame.itertuples(index=False)
    ]
    logger.info(
        "Parsed CO2 payload",
        extra={
            "points": len(points),
            "first_date": points[0].date.isoformat(),
            "latest_date": points[-1].date.isoformat(),
        },
    )
    return points
