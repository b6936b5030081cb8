"""Service configuration pulled from environment variables via pydantic."""
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.logging_utils import get_tagged_logger, mask_secret
logger = get_tagged_logger(__name__, tag="config")

DEFAULT_UPSTREAM_HOST = "daily-atmosphere-carbon-dioxide-concentration.p.rapidapi.com"


class Settings(BaseSettings):
    """Environment-driven configuration for the CO2 forecast service."""
    model_config = SettingsConfigDict(env_prefix="CO2_", extra="ignore")

    # upstream data provider
    data_source: str = "rapidapi"  # options: rapidapi, file
    upstream_url: str = f"https://{DEFAULT_UPSTREAM_HOST}/api/co2-api"
    upstream_host: str = DEFAULT_UPSTREAM_HOST
    upstream_api_key: str | None = None
    upstream_timeout_seconds: float = 10.0
    upstream_retries: int = 2
    upstream_backoff_factor: float = 0.2
    data_file_path: str | None = None

    # dataset cache
    dataset_ttl_seconds: int = 24 * 60 * 60
    max_stale_seconds: int | None = None  # None: serve stale data indefinitely
    refresh_backoff_seconds: int = 60
    warm_start: bool = False

    # forecasting model
    seasonal_period: float = 365.25
    min_seasonal_cycles: float = 2.0
    max_ar_order: int = 2
    max_ma_order: int = 2
    max_diff: int = 2
    fourier_terms: int = 2
    fit_maxiter: int = 50
    max_horizon_days: int | None = None  # None: no limit

    # presentation
    history_years: int = 10
    table_parallelism: int = 1

    # http boundary
    api_key: str | None = None
    cors_origins: list[str] = ["*"]
    log_level: str = "INFO"

    @field_validator("upstream_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the upstream URL to avoid double slashes."""
        return str(v).rstrip("/")

    @field_validator("data_source", mode="after")
    @classmethod
    def normalize_source(cls, v: str) -> str:
        """Source names are matched case-insensitively."""
        return str(v).strip().lower()


settings = Settings()


if __name__ == "__main__":
    logger.logger.setLevel("DEBUG")
    logger.debug(
        "Loaded settings: %s",
        settings.model_dump_json(indent=4, exclude={"upstream_api_key", "api_key"}),
    )
    logger.debug("Upstream key: %s", mask_secret(settings.upstream_api_key))
