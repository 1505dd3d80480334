from functools import lru_cache
from typing import Any

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = frozenset({"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"})


def _with_psycopg_driver(value: str) -> str:
    """Point bare ``postgres://`` and ``postgresql://`` URLs at psycopg 3."""

    scheme, separator, rest = value.partition("://")
    if separator and scheme.lower() in {"postgres", "postgresql"}:
        return f"postgresql+psycopg://{rest}"
    return value


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum loguru level written to stderr (DEBUG|INFO|WARNING|ERROR)",
    )
    database_url: AnyUrl | str = Field(
        default="sqlite:///../data/bills.db",
        description="SQLAlchemy compatible database URL",
    )
    upstream_base_url: AnyUrl | str = Field(
        default="https://bill.7ty.vn/api",
        description="Base URL of the bill lookup provider",
    )
    upstream_path: str = Field(
        default="/check-electricity",
        description="Relative path of the bill lookup endpoint",
    )
    upstream_timeout_ms: int = Field(
        default=30000,
        description="Upper bound for a single upstream attempt, in milliseconds",
        ge=1,
    )
    upstream_max_attempts: int = Field(
        default=4,
        description="Attempts per account including the first one",
        ge=1,
    )
    upstream_concurrency: int = Field(
        default=6,
        description="Maximum number of upstream calls in flight for one batch",
    )
    upstream_backoff_base_ms: float = Field(
        default=700.0,
        description="Multiplier of the exponential backoff between retries",
        ge=0,
    )
    upstream_backoff_cap_ms: float = Field(
        default=10000.0,
        description="Hard cap for a single backoff wait (jitter excluded)",
        ge=0,
    )
    upstream_user_agent: str = Field(
        default="bill-desk/0.1",
        description="User-Agent header sent to the lookup provider",
    )
    batch_max_accounts: int = Field(
        default=500,
        description="Largest accepted bulk lookup; bigger batches are rejected",
        ge=1,
    )
    stock_import_max_bills: int = Field(
        default=500,
        description="Largest accepted stock import request",
        ge=1,
    )
    sale_max_keys: int = Field(
        default=200,
        description="Largest number of stock keys sold in one request",
        ge=1,
    )
    api_tokens: list[str] | str = Field(
        default_factory=list,
        description="Bearer tokens accepted by the API (comma-separated or list)",
    )
    skip_auth: bool = Field(
        default=False,
        description="Bypass bearer token checks (local development only)",
    )

    @field_validator("upstream_concurrency", mode="before")
    @classmethod
    def _clamp_concurrency(cls, value: Any) -> int:
        try:
            concurrency = int(value)
        except (TypeError, ValueError):
            return 1
        return concurrency if concurrency >= 1 else 1

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level == "WARN":
            level = "WARNING"
        if level not in LOG_LEVELS:
            raise ValueError("LOG_LEVEL must be one of DEBUG, INFO, WARNING, ERROR")
        return level

    @field_validator("api_tokens", mode="after")
    @classmethod
    def _parse_api_tokens(cls, value: Any) -> list[str]:
        if value in (None, "", []):
            return []
        if isinstance(value, str):
            return [item for item in (part.strip() for part in value.split(",")) if item]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        raise ValueError("API_TOKENS must be provided as a list or comma-separated string")

    @property
    def resolved_database_url(self) -> str:
        return _with_psycopg_driver(str(self.database_url))

    @property
    def upstream_timeout_seconds(self) -> float:
        return self.upstream_timeout_ms / 1000.0


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
