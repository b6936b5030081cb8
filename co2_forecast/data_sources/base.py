"""Interfaces and helpers for upstream CO2 data sources."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Protocol

from co2_forecast.errors import NetworkError, ParseError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="data_sources/base")


class Co2DataSource(Protocol):
    """Anything that can return the raw ``{"co2": {...}}`` payload."""

    def fetch_payload(self) -> Dict[str, Any]:
        """Return the decoded upstream payload; raise NetworkError/ParseError on failure."""
        ...


@dataclass
class CallableCo2DataSource(Co2DataSource):
    """Wrap a fetch callable so it can be swapped for tests or other backends."""

    fetch: Callable[..., Dict[str, Any]]

    def fetch_payload(self) -> Dict[str, Any]:
        """Delegate to the configured callable."""
        return self.fetch()


@dataclass
class FileCo2DataSource(Co2DataSource):
    """Read the upstream JSON shape from a local file (offline/dev)."""

    path: Path

    def fetch_payload(self) -> Dict[str, Any]:
        """Load the payload from disk, mapping I/O and JSON errors to typed errors."""
        logger.info("Loading CO2 payload from file", extra={"path": str(self.path)})
        try:
            raw = Path(self.path).read_text(encoding="utf-8")
        except OSError as exc:
            raise NetworkError(f"Could not read data file {self.path}: {exc}") from exc
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ParseError(f"Data file {self.path} is not valid JSON: {exc}") from exc
